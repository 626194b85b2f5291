"""Staleness state machine for report aggregates.

Every aggregate row carries ``update_status``:

    current   --mark_requested-->    requested
    requested --claim_for_rebuild--> pending
    pending   --complete (ok)-->     current, or requested when re-requested meanwhile
    pending   --complete (failed)--> requested

Each transition is a single conditional UPDATE, so two workers racing for the
same aggregate can never both win a claim, and a request that lands while a
rebuild is running is never lost.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from jobcost.core.errors import AggregateNotFoundError
from jobcost.core.periods import utcnow
from jobcost.models.reports import JobsiteDayReport, JobsitePeriodReport, JobsiteYearMasterReport, UpdateStatus

logger = logging.getLogger(__name__)

ReportModel = type[JobsiteDayReport] | type[JobsitePeriodReport] | type[JobsiteYearMasterReport]

MAX_ERROR_LENGTH = 2000
# Bounds the retry when a re-request races the completion statements.
MAX_COMPLETE_ATTEMPTS = 5


class StalenessTracker:
    def __init__(self, db: Session, model: ReportModel, *scope: Any) -> None:
        self.db = db
        self.model = model
        self.scope = scope

    def _execute(self, statement) -> int:
        result = self.db.execute(statement.execution_options(synchronize_session=False))
        return result.rowcount or 0

    # ---------- Requests ----------
    def mark_requested(self, report_id: UUID) -> bool:
        """Flag the aggregate for rebuild. Returns True when the call changed stored state."""

        model = self.model
        now = utcnow()
        changed = self._execute(
            update(model)
            .where(model.id == report_id, model.update_status == UpdateStatus.CURRENT)
            .values(update_status=UpdateStatus.REQUESTED, update_requested_at=now)
        )
        if not changed:
            changed = self._execute(
                update(model)
                .where(
                    model.id == report_id,
                    model.update_status == UpdateStatus.PENDING,
                    model.update_rerequested.is_(False),
                )
                .values(update_rerequested=True, update_requested_at=now)
            )
        if not changed:
            exists = self.db.scalar(select(model.id).where(model.id == report_id))
            if exists is None:
                self.db.rollback()
                raise AggregateNotFoundError(f"{model.__tablename__} row {report_id} not found.")
        self.db.commit()
        return bool(changed)

    # ---------- Claims ----------
    def claim_for_rebuild(self, report_id: UUID, *, reclaim_before: datetime | None = None) -> str | None:
        """Move ``requested`` to ``pending`` and return a claim token, or None when not claimable.

        With ``reclaim_before`` a ``pending`` claim taken before that instant is
        treated as abandoned and may be taken over.
        """

        model = self.model
        token = str(uuid.uuid4())
        was_pending = None
        if reclaim_before is not None:
            was_pending = self.db.scalar(
                select(model.update_claimed_at).where(
                    model.id == report_id,
                    model.update_status == UpdateStatus.PENDING,
                )
            )
        claimed = self._execute(
            update(model)
            .where(model.id == report_id, self._claimable(reclaim_before))
            .values(
                update_status=UpdateStatus.PENDING,
                update_claimed_at=utcnow(),
                update_claim_token=token,
                update_rerequested=False,
            )
        )
        self.db.commit()
        if not claimed:
            return None
        if was_pending is not None:
            logger.warning(
                "Reclaimed stuck %s claim for %s (claimed at %s)",
                model.__tablename__,
                report_id,
                was_pending,
            )
        return token

    def complete_rebuild(
        self,
        report_id: UUID,
        token: str,
        *,
        success: bool,
        values: Mapping[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """Finish a claimed rebuild, writing the rebuilt body and the new state together.

        Returns False, discarding everything pending in the session, when the
        claim token no longer matches (the claim was reclaimed by another worker).
        """

        model = self.model
        now = utcnow()
        owned = (
            model.id == report_id,
            model.update_status == UpdateStatus.PENDING,
            model.update_claim_token == token,
        )
        released = {"update_claim_token": None, "update_claimed_at": None, "update_rerequested": False}

        if not success:
            done = self._execute(
                update(model)
                .where(*owned)
                .values(
                    update_status=UpdateStatus.REQUESTED,
                    update_requested_at=now,
                    last_error=(error or "rebuild failed")[:MAX_ERROR_LENGTH],
                    **released,
                )
            )
            return self._finish(done)

        body = dict(values or {})
        body.update(last_built_at=now, last_error=None, **released)
        for _ in range(MAX_COMPLETE_ATTEMPTS):
            done = self._execute(
                update(model)
                .where(*owned, model.update_rerequested.is_(True))
                .values(update_status=UpdateStatus.REQUESTED, **body)
            )
            if not done:
                done = self._execute(
                    update(model)
                    .where(*owned, model.update_rerequested.is_(False))
                    .values(update_status=UpdateStatus.CURRENT, **body)
                )
            if done:
                return self._finish(done)
            still_owned = self.db.scalar(select(model.id).where(*owned))
            if still_owned is None:
                return self._finish(0)
        return self._finish(0)

    def _finish(self, rowcount: int) -> bool:
        if rowcount:
            self.db.commit()
            return True
        self.db.rollback()
        return False

    # ---------- Scans ----------
    def list_claimable(self, limit: int, *, reclaim_before: datetime | None = None) -> list[UUID]:
        model = self.model
        return self.db.scalars(
            select(model.id)
            .where(*self.scope, self._claimable(reclaim_before))
            .order_by(model.update_requested_at.asc(), model.created_at.asc(), model.id.asc())
            .limit(limit)
        ).all()

    def _claimable(self, reclaim_before: datetime | None):
        model = self.model
        requested = model.update_status == UpdateStatus.REQUESTED
        if reclaim_before is None:
            return requested
        return or_(
            requested,
            and_(model.update_status == UpdateStatus.PENDING, model.update_claimed_at < reclaim_before),
        )

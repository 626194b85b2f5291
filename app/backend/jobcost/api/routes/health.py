"""Health check endpoints."""

from fastapi import APIRouter

from jobcost.core.config import get_settings

router = APIRouter()


@router.get("/health")
def health() -> dict[str, object]:
    """Liveness endpoint, also reporting whether this process runs the rebuild loops."""

    return {"status": "ok", "workers_enabled": get_settings().workers_enabled}

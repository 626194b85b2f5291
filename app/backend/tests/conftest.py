from __future__ import annotations

from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from jobcost.core.config import Settings
from jobcost.db.base import Base
from jobcost.db.dependencies import get_db_session
import jobcost.models  # noqa: F401
from jobcost.main import create_app
from jobcost.models.entities import (
    Employee,
    EmployeeRate,
    EmployeeWork,
    Invoice,
    Jobsite,
    JobsiteMaterial,
    JobsiteMaterialRate,
    JobsiteTruckingRate,
    MaterialShipment,
    Production,
    SystemRate,
    SystemRateKind,
    SystemSettings,
    Vehicle,
    VehicleRate,
    VehicleTypeDefaultRate,
    VehicleWork,
)
from jobcost.models.reports import JobsiteDayReport, JobsitePeriodReport, JobsiteYearMasterReport

TEST_TABLES = [
    Jobsite.__table__,
    Employee.__table__,
    EmployeeRate.__table__,
    Vehicle.__table__,
    VehicleRate.__table__,
    VehicleTypeDefaultRate.__table__,
    JobsiteMaterial.__table__,
    JobsiteMaterialRate.__table__,
    JobsiteTruckingRate.__table__,
    EmployeeWork.__table__,
    VehicleWork.__table__,
    MaterialShipment.__table__,
    Production.__table__,
    Invoice.__table__,
    SystemSettings.__table__,
    SystemRate.__table__,
    JobsiteDayReport.__table__,
    JobsitePeriodReport.__table__,
    JobsiteYearMasterReport.__table__,
]


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def worker_settings() -> Settings:
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        worker_batch_size=50,
        worker_max_concurrency=1,
    )


@pytest.fixture()
def organization(db_session: Session) -> SystemSettings:
    """Edmonton timezone, 10% overhead and 3% external surcharge."""

    settings_row = SystemSettings(id=1, timezone="America/Edmonton")
    db_session.add(settings_row)
    db_session.add(
        SystemRate(kind=SystemRateKind.INTERNAL_OVERHEAD, percent=Decimal("10"), effective_date=date(2020, 1, 1))
    )
    db_session.add(
        SystemRate(
            kind=SystemRateKind.EXTERNAL_INVOICE_SURCHARGE,
            percent=Decimal("3"),
            effective_date=date(2020, 1, 1),
        )
    )
    db_session.commit()
    return settings_row


@pytest.fixture()
def jobsite(db_session: Session) -> Jobsite:
    row = Jobsite(code="J-100", name="Highway 2 Paving")
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

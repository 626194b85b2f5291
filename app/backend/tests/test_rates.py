from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from jobcost.core.errors import ConfigurationError
from jobcost.models.entities import SystemRate, SystemRateKind, SystemSettings
from jobcost.services.rates import (
    IssueType,
    OrganizationConfig,
    PercentRate,
    ReportIssue,
    merge_issues,
    rate_for_date,
)


def test_rate_for_date_picks_latest_effective_on_or_before_day() -> None:
    rates = [
        PercentRate(rate=Decimal("30"), effective_date=date(2024, 1, 1)),
        PercentRate(rate=Decimal("35"), effective_date=date(2024, 6, 1)),
        PercentRate(rate=Decimal("40"), effective_date=date(2024, 9, 1)),
    ]

    assert rate_for_date(rates, date(2024, 5, 31)) == Decimal("30")
    assert rate_for_date(rates, date(2024, 6, 1)) == Decimal("35")
    assert rate_for_date(rates, date(2025, 1, 1)) == Decimal("40")


def test_rate_for_date_is_zero_before_first_rate() -> None:
    rates = [PercentRate(rate=Decimal("30"), effective_date=date(2024, 1, 1))]

    assert rate_for_date(rates, date(2023, 12, 31)) == Decimal("0")
    assert rate_for_date([], date(2024, 1, 1)) == Decimal("0")


def test_merge_issues_sums_counts_per_type_and_entity() -> None:
    merged = merge_issues(
        [
            ReportIssue(IssueType.VEHICLE_RATE_ZERO, "v-1"),
            ReportIssue(IssueType.VEHICLE_RATE_ZERO, "v-1", 2),
            ReportIssue(IssueType.VEHICLE_RATE_ZERO, "v-2"),
            ReportIssue(IssueType.NON_COSTED_MATERIALS, None, 4),
        ]
    )

    assert merged == [
        ReportIssue(IssueType.NON_COSTED_MATERIALS, None, 4),
        ReportIssue(IssueType.VEHICLE_RATE_ZERO, "v-1", 3),
        ReportIssue(IssueType.VEHICLE_RATE_ZERO, "v-2", 1),
    ]


def test_issue_json_round_trip_keeps_type_entity_and_count() -> None:
    issue = ReportIssue(IssueType.MATERIAL_ESTIMATED_RATE, "m-1", 2)

    assert ReportIssue.from_json(issue.to_json()) == issue


def test_organization_config_requires_settings_row(db_session: Session) -> None:
    with pytest.raises(ConfigurationError):
        OrganizationConfig.load(db_session)


def test_organization_config_requires_overhead_rates(db_session: Session) -> None:
    db_session.add(SystemSettings(id=1, timezone="America/Edmonton"))
    db_session.commit()

    config = OrganizationConfig.load(db_session)

    with pytest.raises(ConfigurationError):
        config.overhead_percent(date(2024, 6, 1))


def test_organization_config_falls_back_to_default_surcharge(db_session: Session) -> None:
    db_session.add(SystemSettings(id=1, timezone="America/Edmonton"))
    db_session.add(
        SystemRate(kind=SystemRateKind.INTERNAL_OVERHEAD, percent=Decimal("12.5"), effective_date=date(2024, 1, 1))
    )
    db_session.commit()

    config = OrganizationConfig.load(db_session)

    assert config.overhead_percent(date(2024, 6, 1)) == Decimal("12.5")
    # Earlier periods use the first configured overhead rate.
    assert config.overhead_percent(date(2023, 6, 1)) == Decimal("12.5")
    assert config.surcharge_percent(date(2024, 6, 1)) == Decimal("3")


def test_organization_config_time_versions_system_rates(db_session: Session, organization: SystemSettings) -> None:
    db_session.add(
        SystemRate(kind=SystemRateKind.INTERNAL_OVERHEAD, percent=Decimal("15"), effective_date=date(2024, 7, 1))
    )
    db_session.commit()

    config = OrganizationConfig.load(db_session)

    assert config.overhead_percent(date(2024, 6, 1)) == Decimal("10")
    assert config.overhead_percent(date(2024, 7, 1)) == Decimal("15")
    assert str(config.timezone) == "America/Edmonton"

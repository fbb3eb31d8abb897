"""Entitlement ledger: defaults, tier changes and month arithmetic."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, func

from cirkel.core.database import get_db_session, entitlements
from cirkel.core.errors import ConflictError, NotFoundError
from cirkel.features.entitlements.service import (
    FREE_MAX_PROJECTS,
    FREE_STORAGE_BYTES,
    PREMIUM_MAX_PROJECTS,
    PREMIUM_STORAGE_BYTES,
    activate,
    add_months,
    compute_expiry,
    deactivate,
    expire_if_due,
    get_entitlement,
)
from cirkel.features.quota.service import record_usage, record_project_delta
from cirkel.models.entitlement import MIB, Plan


T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_add_months_clamps_to_month_end():
    start = datetime(2024, 1, 31, tzinfo=timezone.utc)
    assert add_months(start, 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_months(datetime(2023, 12, 15, tzinfo=timezone.utc), 1) == datetime(2024, 1, 15, tzinfo=timezone.utc)


def test_yearly_plan_adds_twelve_months():
    start = datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert compute_expiry(Plan.YEARLY, start) == datetime(2025, 2, 28, tzinfo=timezone.utc)
    assert compute_expiry(Plan.MONTHLY, start) == datetime(2024, 3, 29, tzinfo=timezone.utc)


def test_new_user_starts_on_free_tier(make_user):
    make_user("U1")
    record = get_entitlement("U1")

    assert record.active is False
    assert record.tier == "free"
    assert record.plan is None
    assert record.storage.total_bytes == FREE_STORAGE_BYTES == 512 * MIB
    assert record.storage.used_bytes == 0
    assert record.projects.max_count == FREE_MAX_PROJECTS
    assert record.projects.current_count == 0


def test_duplicate_user_is_a_conflict(make_user):
    make_user("U1")
    with pytest.raises(ConflictError):
        make_user("U1")


def test_activate_sets_window_and_premium_ceilings(make_user):
    make_user("U1")
    record = activate("U1", Plan.MONTHLY, now=T0)

    assert record.active is True
    assert record.plan == Plan.MONTHLY
    assert record.auto_renew is True
    assert record.started_at == T0
    assert record.expires_at == datetime(2024, 2, 15, 12, 0, tzinfo=timezone.utc)
    assert record.storage.total_bytes == PREMIUM_STORAGE_BYTES
    assert record.projects.max_count == PREMIUM_MAX_PROJECTS


def test_repeat_activation_restarts_the_window(make_user):
    make_user("U1")
    activate("U1", now=T0)
    later = T0 + timedelta(days=10)
    record = activate("U1", now=later)

    assert record.started_at == later
    assert record.expires_at == add_months(later, 1)


def test_tier_changes_keep_usage_counters(make_user):
    make_user("U1")
    record_usage("U1", 300 * MIB)
    record_project_delta("U1", 2)

    activated = activate("U1", now=T0)
    assert activated.storage.used_bytes == 300 * MIB
    assert activated.projects.current_count == 2

    deactivated = deactivate("U1", now=T0)
    assert deactivated.active is False
    assert deactivated.plan is None
    assert deactivated.started_at is None
    assert deactivated.expires_at is None
    assert deactivated.auto_renew is False
    assert deactivated.storage.total_bytes == FREE_STORAGE_BYTES
    assert deactivated.storage.used_bytes == 300 * MIB
    assert deactivated.projects.current_count == 2


def test_unknown_user_is_never_created():
    with pytest.raises(NotFoundError):
        activate("ghost", now=T0)
    with pytest.raises(NotFoundError):
        deactivate("ghost", now=T0)

    with get_db_session() as session:
        count = session.execute(select(func.count()).select_from(entitlements)).scalar_one()
    assert count == 0


def test_elapsed_window_reverts_on_read(make_user):
    make_user("U1")
    activate("U1", now=T0)

    still_active = expire_if_due("U1", now=T0 + timedelta(days=20))
    assert still_active.active is True

    expired = expire_if_due("U1", now=T0 + timedelta(days=40))
    assert expired.active is False
    assert get_entitlement("U1").tier == "free"


def test_to_dict_uses_wire_names(make_user):
    make_user("U1")
    payload = activate("U1", now=T0).to_dict()

    assert payload["userId"] == "U1"
    assert payload["tier"] == "premium"
    assert payload["plan"] == "monthly"
    assert payload["storage"] == {"totalBytes": PREMIUM_STORAGE_BYTES, "usedBytes": 0}
    assert payload["projects"]["maxCount"] == PREMIUM_MAX_PROJECTS

"""
cirkel/features/entitlements/service.py

Entitlement ledger.

Owns the per-user entitlement record:
- free-tier defaults written at account creation
- activate / deactivate, the only writes that change the tier
- usage counters (storage bytes, project count), carried across tier changes

Every write is a single-row update. Callers that need the write to commit
together with something else (webhook dedup markers) pass their session.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from cirkel.core.database import entitlements, session_scope, ensure_utc
from cirkel.core.errors import NotFoundError
from cirkel.core.metrics import ledger_writes_total
from cirkel.models.entitlement import (
    Entitlement,
    Plan,
    ProjectQuota,
    StorageQuota,
    MIB,
    GIB,
)


logger = logging.getLogger(__name__)

FREE_STORAGE_BYTES = 512 * MIB
FREE_MAX_PROJECTS = 3
PREMIUM_STORAGE_BYTES = 10 * GIB
PREMIUM_MAX_PROJECTS = 999999  # effectively unlimited


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def add_months(start: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamped to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_expiry(plan: Plan, now: datetime) -> datetime:
    if plan == Plan.YEARLY:
        return add_months(now, 12)
    return add_months(now, 1)


def _row_to_entitlement(row) -> Entitlement:
    return Entitlement(
        user_id=row.user_id,
        active=bool(row.active),
        plan=Plan(row.plan) if row.plan else None,
        started_at=ensure_utc(row.started_at),
        expires_at=ensure_utc(row.expires_at),
        auto_renew=bool(row.auto_renew),
        storage=StorageQuota(
            total_bytes=row.storage_total_bytes,
            used_bytes=row.storage_used_bytes,
        ),
        projects=ProjectQuota(
            max_count=row.projects_max,
            current_count=row.projects_current,
        ),
        updated_at=ensure_utc(row.updated_at),
    )


def create_entitlement(user_id: str, session: Session, now: Optional[datetime] = None) -> None:
    """Insert the free-tier record. Runs inside the account-creation transaction."""
    session.execute(
        insert(entitlements).values(
            user_id=user_id,
            active=False,
            plan=None,
            started_at=None,
            expires_at=None,
            auto_renew=False,
            storage_total_bytes=FREE_STORAGE_BYTES,
            storage_used_bytes=0,
            projects_max=FREE_MAX_PROJECTS,
            projects_current=0,
            updated_at=_normalize_now(now),
        )
    )


def get_entitlement(user_id: str, session: Optional[Session] = None) -> Entitlement:
    """
    Read a user's entitlement record.

    Raises:
        NotFoundError: the user has no record
    """
    with session_scope(session) as s:
        row = s.execute(
            select(entitlements).where(entitlements.c.user_id == user_id)
        ).first()
    if not row:
        raise NotFoundError(f"No entitlement record for user {user_id}")
    return _row_to_entitlement(row)


def _apply_tier(user_id: str, values: dict, action: str, session: Optional[Session]) -> Entitlement:
    with session_scope(session) as s:
        result = s.execute(
            update(entitlements)
            .where(entitlements.c.user_id == user_id)
            .values(**values)
        )
        if result.rowcount == 0:
            # Never create a placeholder for an unknown user
            ledger_writes_total.inc(labels={"action": action, "result": "not_found"})
            raise NotFoundError(f"No entitlement record for user {user_id}")
        entitlement = get_entitlement(user_id, session=s)

    ledger_writes_total.inc(labels={"action": action, "result": "ok"})
    logger.info(
        f"[entitlements] {action}",
        extra={"user_id": user_id, "event_type": f"entitlement.{action}"},
    )
    return entitlement


def activate(
    user_id: str,
    plan: Plan = Plan.MONTHLY,
    now: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> Entitlement:
    """
    Flip the user to premium.

    The window always restarts at `now`; a repeat call re-extends it rather
    than stacking duration. Usage counters are left as they are.
    """
    plan = Plan(plan)
    started = _normalize_now(now)
    return _apply_tier(
        user_id,
        {
            "active": True,
            "plan": plan.value,
            "started_at": started,
            "expires_at": compute_expiry(plan, started),
            "auto_renew": True,
            "storage_total_bytes": PREMIUM_STORAGE_BYTES,
            "projects_max": PREMIUM_MAX_PROJECTS,
            "updated_at": started,
        },
        "activate",
        session,
    )


def deactivate(
    user_id: str,
    now: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> Entitlement:
    """
    Revert the user to free-tier ceilings.

    Usage above the free ceiling is kept; only new writes are refused until
    usage drops back under it.
    """
    return _apply_tier(
        user_id,
        {
            "active": False,
            "plan": None,
            "started_at": None,
            "expires_at": None,
            "auto_renew": False,
            "storage_total_bytes": FREE_STORAGE_BYTES,
            "projects_max": FREE_MAX_PROJECTS,
            "updated_at": _normalize_now(now),
        },
        "deactivate",
        session,
    )


def expire_if_due(user_id: str, now: Optional[datetime] = None) -> Entitlement:
    """Deactivate a premium record whose window has passed; otherwise a read."""
    current = get_entitlement(user_id)
    moment = _normalize_now(now)
    if current.active and current.expires_at and current.expires_at <= moment:
        logger.info("[entitlements] premium window elapsed", extra={"user_id": user_id})
        return deactivate(user_id, now=moment)
    return current

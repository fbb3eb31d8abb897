"""
Quota enforcer.

Read-then-decide over the entitlement ledger. Reads go through
`expire_if_due`, so an elapsed premium window is reverted before the
ceilings are compared.

The checks are not transactional with the caller's upload or project
creation: two callers may both pass a check before either records usage,
and the resulting overshoot is accepted. The next check sees it and refuses.
"""

import logging
from typing import Optional

from cirkel.core.database import entitlements
from cirkel.core.errors import QuotaExceededError, ValidationError
from cirkel.core.metrics import quota_denials_total
from cirkel.features.counters.service import CounterRef, increment
from cirkel.features.entitlements.service import expire_if_due, get_entitlement
from cirkel.models.entitlement import Entitlement


logger = logging.getLogger(__name__)


def _ledger_ref(user_id: str) -> CounterRef:
    return CounterRef(table=entitlements, key={"user_id": user_id})


def get_quota(user_id: str) -> Entitlement:
    return expire_if_due(user_id)


def check_storage(user_id: str, proposed_bytes: int) -> bool:
    """True when `proposed_bytes` more would still fit under the ceiling."""
    if proposed_bytes < 0:
        raise ValidationError("proposed_bytes must be >= 0")
    record = expire_if_due(user_id)
    return record.storage.used_bytes + proposed_bytes <= record.storage.total_bytes


def check_project_count(user_id: str) -> bool:
    record = expire_if_due(user_id)
    return record.projects.current_count < record.projects.max_count


def enforce_storage(user_id: str, proposed_bytes: int, request_id: Optional[str] = None) -> None:
    """Raise QuotaExceededError when the storage check fails."""
    if check_storage(user_id, proposed_bytes):
        return
    quota_denials_total.inc(labels={"resource": "storage"})
    logger.info(
        "[quota] storage denied",
        extra={"user_id": user_id, "event_type": "quota.denied", "error_code": "quota_exceeded"},
    )
    raise QuotaExceededError(
        f"Storage limit reached: {proposed_bytes} more bytes would exceed your plan",
        request_id=request_id,
    )


def enforce_project_count(user_id: str, request_id: Optional[str] = None) -> None:
    """Raise QuotaExceededError when the project check fails."""
    if check_project_count(user_id):
        return
    quota_denials_total.inc(labels={"resource": "projects"})
    logger.info(
        "[quota] project denied",
        extra={"user_id": user_id, "event_type": "quota.denied", "error_code": "quota_exceeded"},
    )
    raise QuotaExceededError("Project limit reached for your plan", request_id=request_id)


def record_usage(user_id: str, delta_bytes: int) -> Entitlement:
    """
    Add `delta_bytes` (negative on deletion) to the stored usage.

    Called after a successful upload; never blocked by the ceiling.
    """
    increment(_ledger_ref(user_id), "storage_used_bytes", int(delta_bytes))
    return get_entitlement(user_id)


def record_project_delta(user_id: str, delta: int) -> Entitlement:
    increment(_ledger_ref(user_id), "projects_current", int(delta))
    return get_entitlement(user_id)

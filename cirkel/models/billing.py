"""
Billing event types shared by the payment provider adapters and the
webhook processor.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from cirkel.models.entitlement import Plan


class LedgerAction(str, Enum):
    """Normalized effect of a provider status on the entitlement ledger."""
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    IGNORE = "ignore"


class ProcessOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentReference:
    """Decoded `<purpose>-<userId>-<issuedAtEpoch>` reference string."""
    purpose: str
    user_id: str
    issued_at: str


@dataclass
class WebhookEvent:
    """One provider notification, normalized."""
    provider: str
    provider_event_id: str
    idempotency_key: str
    external_reference: str
    status: str
    action: LedgerAction
    user_id: Optional[str]
    plan: Plan = Plan.MONTHLY
    received_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessResult:
    """What the processor did with an event; every outcome answers 2xx."""
    outcome: ProcessOutcome
    provider: str
    provider_event_id: str
    action: LedgerAction
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": True,
            "outcome": self.outcome.value,
            "provider": self.provider,
            "eventId": self.provider_event_id,
            "action": self.action.value,
            "userId": self.user_id,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }

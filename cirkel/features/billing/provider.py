"""
Payment provider protocol.

Each provider adapter turns its own payload vocabulary into one normalized
WebhookEvent (activate | deactivate | ignore). The processor and the
entitlement ledger never branch on the provider.
"""
from datetime import datetime, timezone
from typing import Protocol, Mapping, Any, Optional

from cirkel.core.errors import MalformedPayloadError
from cirkel.models.billing import PaymentReference, WebhookEvent


PREMIUM_PURPOSE = "premium"


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must handle:
    - Authenticity checks (fail closed with UnauthorizedError)
    - Payload parsing (MalformedPayloadError when the reference is unusable)
    - Status mapping to a LedgerAction
    """

    name: str

    def parse_event(self, payload: Mapping[str, Any]) -> WebhookEvent:
        """
        Normalize one provider notification.

        Raises:
            MalformedPayloadError: payload or reference does not parse
        """
        ...


def build_reference(purpose: str, user_id: str, issued_at: Optional[datetime] = None) -> str:
    """`<purpose>-<userId>-<epochMillis>`: the only channel carrying the user back."""
    moment = issued_at or datetime.now(timezone.utc)
    return f"{purpose}-{user_id}-{int(moment.timestamp() * 1000)}"


def parse_reference(reference: Optional[str]) -> PaymentReference:
    """
    Decode a reference string.

    The user id may itself contain dashes: the first segment is the
    purpose, the last is the issue timestamp, everything between is the id.

    Raises:
        MalformedPayloadError: fewer than three segments, empty user id or
            a non-numeric timestamp
    """
    if not reference or not isinstance(reference, str):
        raise MalformedPayloadError("Missing payment reference")

    parts = reference.split("-")
    if len(parts) < 3:
        raise MalformedPayloadError(f"Unparsable payment reference: {reference!r}")

    purpose, issued_at = parts[0], parts[-1]
    user_id = "-".join(parts[1:-1])
    if not purpose or not user_id or not issued_at.isdigit():
        raise MalformedPayloadError(f"Unparsable payment reference: {reference!r}")

    return PaymentReference(purpose=purpose, user_id=user_id, issued_at=issued_at)

"""
Xendit invoice callbacks.

Xendit pushes invoice status changes to us. Authenticity is a static
shared secret in the `x-callback-token` header; the invoice's
`external_id` carries the user back.
"""
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from cirkel.core.config import settings
from cirkel.core.errors import MalformedPayloadError, UnauthorizedError
from cirkel.features.billing.provider import parse_reference
from cirkel.models.billing import LedgerAction, WebhookEvent
from cirkel.models.entitlement import Plan


logger = logging.getLogger(__name__)

CALLBACK_TOKEN_HEADERS = ("x-callback-token", "callback-token")

# Terminal invoice statuses; anything else (PENDING, reminders) is ignored
STATUS_ACTIONS: Dict[str, LedgerAction] = {
    "PAID": LedgerAction.ACTIVATE,
    "EXPIRED": LedgerAction.DEACTIVATE,
    "FAILED": LedgerAction.IGNORE,
}


class XenditInvoiceCallback(BaseModel):
    model_config = ConfigDict(extra="allow")

    external_id: str
    status: str
    id: Optional[str] = None
    payment_method: Optional[str] = None
    paid_amount: Optional[float] = None
    paid_at: Optional[str] = None


class XenditProvider:
    """Xendit implementation of PaymentProvider."""

    name = "xendit"

    def __init__(self, callback_token: Optional[str] = None):
        self.callback_token = callback_token or settings.XENDIT_CALLBACK_TOKEN

    def verify(self, headers: Mapping[str, str]) -> None:
        """
        Compare the callback token header with the configured secret.

        Raises:
            UnauthorizedError: secret unset, header missing or mismatched
        """
        if not self.callback_token:
            # Fail closed: an unconfigured secret never authenticates anything
            raise UnauthorizedError("Xendit callback token is not configured")

        presented = None
        for header in CALLBACK_TOKEN_HEADERS:
            presented = headers.get(header)
            if presented:
                break

        if not presented or not hmac.compare_digest(
            presented.encode("utf-8"), self.callback_token.encode("utf-8")
        ):
            raise UnauthorizedError("Invalid webhook callback token")

    def parse_event(self, payload: Mapping[str, Any]) -> WebhookEvent:
        if not isinstance(payload, Mapping):
            raise MalformedPayloadError("Xendit callback body must be a JSON object")
        try:
            callback = XenditInvoiceCallback.model_validate(dict(payload))
        except PydanticValidationError as e:
            raise MalformedPayloadError(f"Invalid Xendit callback payload: {e.error_count()} error(s)")

        reference = parse_reference(callback.external_id)
        status = callback.status.upper()
        action = STATUS_ACTIONS.get(status, LedgerAction.IGNORE)
        event_id = callback.id or callback.external_id

        return WebhookEvent(
            provider=self.name,
            provider_event_id=event_id,
            # One invoice can legitimately move PAID -> EXPIRED; each status is its own delivery
            idempotency_key=f"{self.name}:{event_id}:{status}",
            external_reference=callback.external_id,
            status=status,
            action=action,
            user_id=reference.user_id,
            plan=Plan.MONTHLY,
            received_at=datetime.now(timezone.utc),
            metadata={
                "payment_method": callback.payment_method,
                "paid_amount": callback.paid_amount,
                "paid_at": callback.paid_at,
            },
        )

"""
Payment event processor.

Coordinates, identically for every provider:
1. Authenticity (provider.verify for pushed callbacks, OAuth for captures)
2. Reference parsing and status mapping (provider.parse_event)
3. Idempotency marker + ledger write, committed together
4. 2xx only after the commit; transient ledger failures surface as 503 so
   the provider retries

Provider-specific code is in xendit_provider.py and paypal_provider.py.
"""
import logging
import threading
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from cirkel.core.database import get_db_session
from cirkel.core.errors import AppError, LedgerWriteError, MalformedPayloadError, NotFoundError
from cirkel.core.idempotency import DuplicateKeyError, check_key, mark_key
from cirkel.core.logging import log_event
from cirkel.core.metrics import webhooks_processed_total
from cirkel.features.billing.paypal_provider import PayPalProvider, capture_key
from cirkel.features.billing.xendit_provider import XenditProvider
from cirkel.features.entitlements import service as ledger
from cirkel.models.billing import LedgerAction, ProcessOutcome, ProcessResult, WebhookEvent
from cirkel.models.entitlement import Entitlement


logger = logging.getLogger(__name__)

_paypal_provider: Optional[PayPalProvider] = None
_paypal_lock = threading.Lock()


def get_xendit_provider() -> XenditProvider:
    return XenditProvider()


def get_paypal_provider() -> PayPalProvider:
    """Process-wide PayPal client; keeps the OAuth token cache warm across requests."""
    global _paypal_provider
    with _paypal_lock:
        if _paypal_provider is None:
            _paypal_provider = PayPalProvider()
        return _paypal_provider


def reset_paypal_provider(provider: Optional[PayPalProvider] = None) -> None:
    """Swap or drop the shared PayPal client (tests, credential rotation)."""
    global _paypal_provider
    with _paypal_lock:
        if _paypal_provider is not None and _paypal_provider is not provider:
            _paypal_provider.close()
        _paypal_provider = provider


def _result(event: WebhookEvent, outcome: ProcessOutcome, expires_at=None) -> ProcessResult:
    webhooks_processed_total.inc(labels={"provider": event.provider, "outcome": outcome.value})
    return ProcessResult(
        outcome=outcome,
        provider=event.provider,
        provider_event_id=event.provider_event_id,
        action=event.action,
        user_id=event.user_id,
        expires_at=expires_at,
    )


def _apply_to_ledger(event: WebhookEvent, session) -> Entitlement:
    if event.action == LedgerAction.ACTIVATE:
        return ledger.activate(event.user_id, event.plan, session=session)
    return ledger.deactivate(event.user_id, session=session)


def process_event(event: WebhookEvent) -> ProcessResult:
    """
    Apply one normalized event at most once.

    Raises:
        MalformedPayloadError: no user could be derived
        NotFoundError: the referenced user has no entitlement record
        LedgerWriteError: the ledger write failed; nothing was committed
    """
    if event.action == LedgerAction.IGNORE:
        # Failed charges and intermediate statuses never change entitlement
        log_event(
            "info",
            "billing.event.ignored",
            user_id=event.user_id,
            event_type=f"{event.provider}.{event.status.lower() or 'unknown'}",
            extra={"provider": event.provider, "provider_event_id": event.provider_event_id},
        )
        return _result(event, ProcessOutcome.IGNORED)

    if not event.user_id:
        raise MalformedPayloadError(f"Event {event.provider_event_id} carries no user id")

    scope = f"webhook.{event.provider}"
    try:
        with get_db_session() as session:
            if check_key(event.idempotency_key, session=session):
                entitlement = None
            else:
                mark_key(event.idempotency_key, scope, session)
                entitlement = _apply_to_ledger(event, session)
    except DuplicateKeyError:
        # A concurrent delivery committed the marker first; its write stands
        entitlement = None
    except NotFoundError:
        log_event(
            "warning",
            "billing.event.unknown_user",
            user_id=event.user_id,
            event_type=f"{event.provider}.{event.status.lower()}",
            error_code="not_found",
            extra={"provider": event.provider, "external_reference": event.external_reference},
        )
        webhooks_processed_total.inc(labels={"provider": event.provider, "outcome": "not_found"})
        raise
    except SQLAlchemyError as e:
        log_event(
            "error",
            "billing.ledger.write_failed",
            user_id=event.user_id,
            event_type=f"{event.provider}.{event.status.lower()}",
            error_code="ledger_write_failed",
            extra={"provider": event.provider, "provider_event_id": event.provider_event_id, "error": e},
        )
        webhooks_processed_total.inc(labels={"provider": event.provider, "outcome": "failed"})
        raise LedgerWriteError("Entitlement ledger write failed; retry later")

    if entitlement is None:
        logger.info(
            "[billing] duplicate delivery",
            extra={
                "provider": event.provider,
                "provider_event_id": event.provider_event_id,
                "outcome": ProcessOutcome.DUPLICATE.value,
            },
        )
        return _result(event, ProcessOutcome.DUPLICATE)

    logger.info(
        "[billing] event applied",
        extra={
            "provider": event.provider,
            "provider_event_id": event.provider_event_id,
            "user_id": event.user_id,
            "outcome": ProcessOutcome.APPLIED.value,
        },
    )
    return _result(event, ProcessOutcome.APPLIED, expires_at=entitlement.expires_at)


def handle_xendit_callback(
    headers: Mapping[str, str],
    payload: Mapping[str, Any],
    provider: Optional[XenditProvider] = None,
) -> ProcessResult:
    """Verify, normalize and apply one Xendit invoice callback."""
    provider = provider or get_xendit_provider()
    try:
        provider.verify(headers)
        event = provider.parse_event(payload)
    except AppError as e:
        # Rejected before any write; kept in the log for manual inspection
        log_event(
            "warning",
            "billing.webhook.rejected",
            error_code=e.code,
            extra={"provider": provider.name, "external_id": payload.get("external_id") if isinstance(payload, Mapping) else None},
        )
        webhooks_processed_total.inc(labels={"provider": provider.name, "outcome": e.code})
        raise
    return process_event(event)


def create_paypal_order(user_id: str, provider: Optional[PayPalProvider] = None) -> dict:
    provider = provider or get_paypal_provider()
    order = provider.create_order(user_id)
    logger.info(
        "[billing] paypal order created",
        extra={"provider": provider.name, "provider_event_id": order.get("orderId"), "user_id": user_id},
    )
    return order


def capture_paypal_order(
    order_id: str,
    caller_id: Optional[str] = None,
    provider: Optional[PayPalProvider] = None,
) -> ProcessResult:
    """
    Capture an approved order and apply it.

    An already-applied order is answered as a duplicate without calling
    PayPal again.
    """
    provider = provider or get_paypal_provider()
    if check_key(capture_key(order_id)):
        logger.info(
            "[billing] capture already applied",
            extra={"provider": provider.name, "provider_event_id": order_id, "outcome": "duplicate"},
        )
        webhooks_processed_total.inc(labels={"provider": provider.name, "outcome": ProcessOutcome.DUPLICATE.value})
        return ProcessResult(
            outcome=ProcessOutcome.DUPLICATE,
            provider=provider.name,
            provider_event_id=order_id,
            action=LedgerAction.ACTIVATE,
            user_id=caller_id,
        )

    capture = provider.capture_order(order_id)
    event = provider.parse_event(capture)
    if caller_id and event.user_id != caller_id:
        # The payer is whoever the order was created for
        logger.warning(
            "[billing] capture requested by another user",
            extra={"provider": provider.name, "provider_event_id": order_id, "user_id": caller_id},
        )
    return process_event(event)


def get_billing_status(user_id: str) -> Entitlement:
    """Current record, with an elapsed premium window reverted to free."""
    return ledger.expire_if_due(user_id)


def cancel_subscription(user_id: str) -> Entitlement:
    entitlement = ledger.deactivate(user_id)
    log_event("info", "billing.subscription.cancelled", user_id=user_id, event_type="entitlement.cancel")
    return entitlement

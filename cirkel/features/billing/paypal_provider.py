"""
PayPal orders.

There is no inbound push for PayPal: the client approves an order and asks
us to capture it, and we call the capture endpoint ourselves. The capture
response is then normalized like any other provider event.

OAuth client-credentials tokens are cached until a safety margin before
their stated expiry.
"""
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from cirkel.core.config import settings
from cirkel.core.errors import (
    MalformedPayloadError,
    ProviderUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from cirkel.features.billing.provider import PREMIUM_PURPOSE, build_reference, parse_reference
from cirkel.models.billing import LedgerAction, WebhookEvent
from cirkel.models.entitlement import Plan


logger = logging.getLogger(__name__)

ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"

STATUS_ACTIONS: Dict[str, LedgerAction] = {
    "COMPLETED": LedgerAction.ACTIVATE,
}


class TokenCache:
    """One bearer token, valid until `expires_in - margin` seconds after issue."""

    def __init__(self, margin_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self.margin_seconds = margin_seconds
        self.clock = clock
        self._token: Optional[str] = None
        self._valid_until = 0.0
        self._lock = threading.Lock()

    def get(self) -> Optional[str]:
        with self._lock:
            if self._token and self.clock() < self._valid_until:
                return self._token
            return None

    def store(self, token: str, expires_in: float) -> None:
        with self._lock:
            self._token = token
            self._valid_until = self.clock() + float(expires_in) - self.margin_seconds

    def clear(self) -> None:
        with self._lock:
            self._token = None
            self._valid_until = 0.0


class PayPalProvider:
    """PayPal implementation of PaymentProvider."""

    name = "paypal"

    def __init__(
        self,
        client_id: Optional[str] = None,
        secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        token_cache: Optional[TokenCache] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.client_id = client_id or settings.PAYPAL_CLIENT_ID
        self.secret = secret or settings.PAYPAL_SECRET
        self.api_base = (api_base or settings.PAYPAL_API_BASE).rstrip("/")
        self.token_cache = token_cache or TokenCache(settings.PAYPAL_TOKEN_REFRESH_MARGIN_SECONDS)
        self.client = http_client or httpx.Client(timeout=timeout or settings.PAYPAL_TIMEOUT_SECONDS)

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, f"{self.api_base}{path}", **kwargs)
        except httpx.TimeoutException:
            raise ProviderUnavailableError(f"PayPal timed out on {path}")
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"PayPal request failed on {path}: {e.__class__.__name__}")

    def get_access_token(self) -> str:
        """
        Return a cached bearer token, fetching a new one when it is stale.

        Raises:
            UnauthorizedError: credentials missing or rejected
            ProviderUnavailableError: PayPal unreachable or 5xx
        """
        cached = self.token_cache.get()
        if cached:
            return cached

        if not self.client_id or not self.secret:
            raise UnauthorizedError("PayPal credentials are not configured")

        response = self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 500:
            raise ProviderUnavailableError(f"PayPal OAuth returned {response.status_code}")
        if response.status_code != 200:
            logger.warning(
                "[billing] paypal oauth rejected",
                extra={"provider": self.name, "status": response.status_code},
            )
            raise UnauthorizedError("PayPal rejected the client credentials")

        body = response.json()
        token = body.get("access_token")
        if not token:
            raise UnauthorizedError("PayPal OAuth response carried no access token")
        self.token_cache.store(token, body.get("expires_in", 0))
        return token

    def _authorized_request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        request_id: Optional[str] = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
        }
        if method == "POST":
            headers["PayPal-Request-Id"] = request_id or str(uuid.uuid4())
        return self._send(method, path, json=payload, headers=headers)

    def _read_json(self, response: httpx.Response, path: str) -> Dict[str, Any]:
        if response.status_code == 401:
            # Token revoked early; next call fetches a fresh one
            self.token_cache.clear()
            raise UnauthorizedError("PayPal rejected the access token")
        if response.status_code >= 500:
            raise ProviderUnavailableError(f"PayPal returned {response.status_code} on {path}")
        if response.status_code >= 400:
            detail = _error_message(response)
            raise ValidationError(f"PayPal refused {path}: {detail}", code="provider_rejected")
        return response.json()

    def _authorized_json(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        return self._read_json(self._authorized_request(method, path, payload), path)

    def create_order(
        self,
        user_id: str,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Create a CAPTURE-intent order whose purchase unit references the user."""
        value = f"{(amount if amount is not None else settings.PREMIUM_PRICE_USD):.2f}"
        currency_code = currency or settings.PREMIUM_CURRENCY
        reference = build_reference(PREMIUM_PURPOSE, user_id, issued_at)
        order = self._authorized_json(
            "POST",
            "/v2/checkout/orders",
            {
                "intent": "CAPTURE",
                "purchase_units": [{
                    "reference_id": reference,
                    "custom_id": json.dumps({"userId": user_id}),
                    "description": "Premium Subscription - Monthly",
                    "amount": {
                        "currency_code": currency_code,
                        "value": value,
                        "breakdown": {"item_total": {"currency_code": currency_code, "value": value}},
                    },
                    "items": [{
                        "name": "Premium Subscription",
                        "quantity": "1",
                        "unit_amount": {"currency_code": currency_code, "value": value},
                        "category": "DIGITAL_GOODS",
                    }],
                }],
                "application_context": {
                    "brand_name": "Cirkel",
                    "user_action": "PAY_NOW",
                    "shipping_preference": "NO_SHIPPING",
                    "return_url": f"{settings.CLIENT_URL}/app/premium/success",
                    "cancel_url": f"{settings.CLIENT_URL}/app/premium",
                },
            },
        )
        return {
            "clientId": self.client_id,
            "orderId": order.get("id"),
            "status": order.get("status"),
            "reference": reference,
        }

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        if not order_id:
            raise ValidationError("orderId is required")
        path = f"/v2/checkout/orders/{order_id}/capture"
        response = self._authorized_request("POST", path, {}, request_id=capture_request_id(order_id))
        if response.status_code == 422 and ALREADY_CAPTURED in _error_issues(response):
            # Captured on an earlier attempt whose ledger write failed
            logger.info(
                "[billing] paypal order already captured, reading it back",
                extra={"provider": self.name, "provider_event_id": order_id},
            )
            return self._authorized_json("GET", f"/v2/checkout/orders/{order_id}")
        return self._read_json(response, path)

    def parse_event(self, payload: Mapping[str, Any]) -> WebhookEvent:
        """Normalize a capture response (or the captured order view) into a WebhookEvent."""
        order_id = payload.get("id")
        if not order_id:
            raise MalformedPayloadError("PayPal capture response has no order id")

        status = str(payload.get("status") or "").upper()
        action = STATUS_ACTIONS.get(status, LedgerAction.IGNORE)
        units = payload.get("purchase_units") or [{}]
        unit = units[0] or {}
        reference_id = unit.get("reference_id")

        user_id = None
        if reference_id:
            try:
                user_id = parse_reference(reference_id).user_id
            except MalformedPayloadError:
                logger.warning(
                    "[billing] unparsable paypal reference_id, trying custom_id",
                    extra={"provider": self.name, "provider_event_id": order_id},
                )
        user_id = user_id or _user_from_unit(unit)
        if not user_id:
            raise MalformedPayloadError(f"PayPal order {order_id} carries no user reference")

        return WebhookEvent(
            provider=self.name,
            provider_event_id=order_id,
            idempotency_key=capture_key(order_id),
            external_reference=reference_id or "",
            status=status,
            action=action,
            user_id=user_id,
            plan=Plan.MONTHLY,
            received_at=datetime.now(timezone.utc),
        )

    def close(self) -> None:
        self.client.close()


def capture_key(order_id: str) -> str:
    return f"paypal:{order_id}"


def capture_request_id(order_id: str) -> str:
    """Stable PayPal-Request-Id so a repeated capture replays the stored response."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"capture:{order_id}"))


def _user_from_unit(unit: Mapping[str, Any]) -> Optional[str]:
    """custom_id sits on the unit (order view) or on each capture (capture view)."""
    candidates = [unit.get("custom_id")]
    captures = (unit.get("payments") or {}).get("captures") or []
    candidates.extend(c.get("custom_id") for c in captures)
    for raw in candidates:
        if not raw:
            continue
        try:
            user_id = json.loads(raw).get("userId")
        except (ValueError, AttributeError):
            continue
        if user_id:
            return user_id
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    return body.get("message") or body.get("name") or f"HTTP {response.status_code}"


def _error_issues(response: httpx.Response) -> List[str]:
    try:
        body = response.json()
    except ValueError:
        return []
    issues = [d.get("issue") for d in body.get("details") or [] if isinstance(d, dict)]
    issues.append(body.get("name"))
    return [issue for issue in issues if issue]

"""
Billing API routes.

- POST /api/webhook: Xendit invoice callback (x-callback-token)
- POST /api/payments/create-order: create a PayPal order for the caller
- POST /api/payments/capture-order: capture an approved PayPal order and apply it
- GET  /api/billing/status: caller's entitlement record
- POST /api/billing/cancel: explicit cancellation
"""
import json

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from cirkel.core.auth import get_current_user_id
from cirkel.features.billing.service import (
    handle_xendit_callback,
    create_paypal_order,
    capture_paypal_order,
    get_billing_status,
    cancel_subscription,
)


router = APIRouter(tags=["billing"])


class CaptureOrderRequest(BaseModel):
    """Capture request sent by the client after the PayPal approval click."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId", min_length=1)


class CreateOrderResponse(BaseModel):
    clientId: str | None
    orderId: str | None
    status: str | None = None


@router.post("/webhook")
async def xendit_webhook(request: Request):
    """
    Xendit invoice callback.

    Answers 2xx only after the ledger write commits (or the delivery is a
    duplicate / ignored status). 401 and 400 are not retried by Xendit;
    503 is.
    """
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else None
    except ValueError:
        # Authenticity is still checked first; the parser rejects None
        payload = None
    result = handle_xendit_callback(request.headers, payload)
    return result.to_dict()


@router.post("/payments/create-order", response_model=CreateOrderResponse)
def create_order(user_id: str = Depends(get_current_user_id)):
    order = create_paypal_order(user_id)
    return CreateOrderResponse(clientId=order["clientId"], orderId=order["orderId"], status=order.get("status"))


@router.post("/payments/capture-order")
def capture_order(body: CaptureOrderRequest, user_id: str = Depends(get_current_user_id)):
    result = capture_paypal_order(body.order_id, caller_id=user_id)
    return result.to_dict()


@router.get("/billing/status")
def billing_status(user_id: str = Depends(get_current_user_id)):
    return get_billing_status(user_id).to_dict()


@router.post("/billing/cancel")
def billing_cancel(user_id: str = Depends(get_current_user_id)):
    return cancel_subscription(user_id).to_dict()

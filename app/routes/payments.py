# app/routes/payments.py
"""
PayPal checkout, return-URL capture and webhook endpoints for the Pro plan.
"""

import json

from fastapi import APIRouter, Depends, Query, Request, status

from app.auth.verify import auth_dependency, get_user_id
from app.dependencies import get_paypal_service
from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.models.api.analysis_response import CaptureResponse, CheckoutResponse
from app.services.payment_service import PaymentServiceError, PayPalService

logger = get_logger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/create-paypal-checkout", response_model=CheckoutResponse)
async def create_paypal_checkout(
    claims: dict = Depends(auth_dependency),
    paypal: PayPalService = Depends(get_paypal_service),
):
    user_id = get_user_id(claims)

    try:
        order = await paypal.create_checkout_order(user_id)
    except PaymentServiceError as e:
        if e.error_code == "config_error":
            raise ApiError(
                status.HTTP_503_SERVICE_UNAVAILABLE, str(e), "payments_not_configured"
            ) from e
        logger.error(
            "PayPal checkout failed", user_id=user_id, error=str(e), error_code=e.error_code
        )
        raise ApiError(
            status.HTTP_502_BAD_GATEWAY, "Payment provider error", "payment_provider_error"
        ) from e

    return CheckoutResponse(order_id=order["orderId"], approval_url=order["approvalUrl"])


# capture_order error codes mapped to (HTTP status, API error_code)
_CAPTURE_ERRORS = {
    "config_error": (status.HTTP_503_SERVICE_UNAVAILABLE, "payments_not_configured"),
    "capture_incomplete": (status.HTTP_402_PAYMENT_REQUIRED, "payment_not_completed"),
    "order_mismatch": (status.HTTP_403_FORBIDDEN, "order_mismatch"),
}


@router.post("/capture-paypal-payment", response_model=CaptureResponse)
async def capture_paypal_payment(
    order_id: str = Query(..., alias="orderId", pattern=r"^[A-Za-z0-9-]{1,64}$"),
    claims: dict = Depends(auth_dependency),
    paypal: PayPalService = Depends(get_paypal_service),
):
    """Capture the order the buyer just approved and upgrade them to Pro."""
    user_id = get_user_id(claims)

    try:
        capture = await paypal.capture_order(order_id, user_id)
    except PaymentServiceError as e:
        if e.error_code in _CAPTURE_ERRORS:
            status_code, error_code = _CAPTURE_ERRORS[e.error_code]
            raise ApiError(status_code, str(e), error_code) from e
        logger.error(
            "PayPal capture failed", user_id=user_id, order_id=order_id, error_code=e.error_code
        )
        raise ApiError(
            status.HTTP_502_BAD_GATEWAY, "Failed to capture payment", "payment_provider_error"
        ) from e

    return CaptureResponse(
        order_id=capture["orderId"], status=capture["status"], capture_id=capture["captureId"]
    )


@router.post("/paypal-webhook")
async def paypal_webhook(request: Request, paypal: PayPalService = Depends(get_paypal_service)):
    """Receive PayPal events. Unverifiable deliveries are rejected with 400."""
    try:
        event = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "Invalid JSON in request body", "invalid_json"
        ) from e

    if not isinstance(event, dict):
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "Webhook body must be an object", "invalid_json"
        )

    try:
        verified = await paypal.verify_webhook_signature(dict(request.headers), event)
    except PaymentServiceError as e:
        logger.error("PayPal webhook verification error", error=str(e), error_code=e.error_code)
        verified = False

    if not verified:
        logger.warning(
            "Rejected PayPal webhook with invalid signature",
            event_id=event.get("id"),
            event_type=event.get("event_type"),
        )
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "Invalid webhook signature", "invalid_signature"
        )

    processed = await paypal.handle_webhook_event(event)
    return {"received": True, "processed": processed}

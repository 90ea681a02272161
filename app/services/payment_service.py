# app/services/payment_service.py
"""
PayPal integration for the Pro plan.
Creates checkout orders and processes payment webhooks.

Webhooks are only trusted after PayPal's verify-webhook-signature API
confirms them.
"""

import asyncio
from typing import Any

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository
from app.services.notification_service import NotificationService, notification_service

logger = get_logger(__name__)

REQUEST_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"

# Transmission headers PayPal signs each webhook delivery with
WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PaymentServiceError(Exception):
    """Raised when a PayPal call fails or PayPal is not configured."""

    def __init__(self, message: str, error_code: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.error_code = error_code
        self.recoverable = recoverable


class PayPalService:
    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        profiles=ProfileRepository,
        notifier: NotificationService | None = None,
    ):
        self.api_base = settings.paypal_api_base()
        self.transport = transport
        self.profiles = profiles
        self.notifier = notifier or notification_service

    def _ensure_configured(self) -> None:
        if not settings.PAYPAL_CLIENT_ID or not settings.PAYPAL_CLIENT_SECRET:
            raise PaymentServiceError("PayPal is not configured", error_code="config_error")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base, timeout=REQUEST_TIMEOUT, transport=self.transport
        )

    async def _request_with_retry(
        self, client: httpx.AsyncClient, method: str, url: str, operation: str, **kwargs
    ) -> httpx.Response:
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await client.request(method, url, **kwargs)

                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "PayPal transient status",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return response

            except httpx.RequestError as e:
                if attempt == MAX_RETRIES:
                    raise PaymentServiceError(
                        f"{operation} failed: {e}", error_code="network_error"
                    ) from e

                wait_time = BACKOFF_FACTOR**attempt
                logger.warning(
                    "PayPal request error, retrying",
                    operation=operation,
                    attempt=attempt,
                    wait_time=wait_time,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(wait_time)

        raise PaymentServiceError(f"{operation} failed: retries exhausted")

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        response = await self._request_with_retry(
            client,
            "POST",
            "/v1/oauth2/token",
            "access_token",
            data={"grant_type": "client_credentials"},
            auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET),
        )
        if response.status_code != 200:
            logger.error("PayPal token request failed", status_code=response.status_code)
            raise PaymentServiceError("PayPal authentication failed", error_code="auth_failed")

        return response.json()["access_token"]

    async def create_checkout_order(self, user_id: str) -> dict[str, str]:
        """
        Create a PayPal order for the Pro plan.

        Returns:
            {"orderId": ..., "approvalUrl": ...}
        """
        self._ensure_configured()

        order = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {"currency_code": "USD", "value": settings.PAYPAL_PLAN_PRICE},
                    "description": "Credit Analysis Pro",
                    "custom_id": user_id,
                }
            ],
            "application_context": {
                "brand_name": "Credit Analysis Pro",
                "user_action": "PAY_NOW",
                "return_url": f"{settings.SITE_URL.rstrip('/')}/payment-success",
                "cancel_url": f"{settings.SITE_URL.rstrip('/')}/payment-cancel",
            },
        }

        async with self._client() as client:
            token = await self._get_access_token(client)
            response = await self._request_with_retry(
                client,
                "POST",
                "/v2/checkout/orders",
                "create_order",
                json=order,
                headers={"Authorization": f"Bearer {token}"},
            )

        if response.status_code not in (200, 201):
            logger.error(
                "PayPal order creation failed",
                user_id=user_id,
                status_code=response.status_code,
                response=response.text[:300],
            )
            raise PaymentServiceError("Failed to create PayPal order", error_code="order_failed")

        data = response.json()
        approval_url = next(
            (link["href"] for link in data.get("links", []) if link.get("rel") == "approve"), None
        )
        if not approval_url:
            raise PaymentServiceError(
                "PayPal order has no approval link", error_code="order_failed"
            )

        logger.info("PayPal order created", user_id=user_id, order_id=data["id"])
        return {"orderId": data["id"], "approvalUrl": approval_url}

    async def capture_order(self, order_id: str, user_id: str) -> dict[str, Any]:
        """
        Capture an approved order when the buyer returns from PayPal.

        The order's custom_id must name the signed-in user. A completed
        capture grants Pro immediately; the later webhook for the same
        capture only repeats the idempotent flag update.

        Returns:
            {"orderId": ..., "status": "COMPLETED", "captureId": ...}
        """
        self._ensure_configured()

        async with self._client() as client:
            token = await self._get_access_token(client)
            response = await self._request_with_retry(
                client,
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                "capture_order",
                json={},
                headers={
                    "Authorization": f"Bearer {token}",
                    "PayPal-Request-Id": f"capture-{order_id}",
                },
            )

        if response.status_code not in (200, 201):
            logger.error(
                "PayPal capture failed",
                order_id=order_id,
                user_id=user_id,
                status_code=response.status_code,
                response=response.text[:300],
            )
            raise PaymentServiceError(
                "Failed to capture PayPal order", error_code="capture_failed"
            )

        data = response.json()
        capture_status = data.get("status")
        if capture_status != "COMPLETED":
            logger.warning(
                "PayPal order not completed", order_id=order_id, capture_status=capture_status
            )
            raise PaymentServiceError(
                f"Payment not completed (status {capture_status})",
                error_code="capture_incomplete",
                recoverable=False,
            )

        capture = _first_capture(data)
        owner = capture.get("custom_id")
        if owner and owner != user_id:
            logger.warning(
                "PayPal order captured for another user",
                order_id=order_id,
                user_id=user_id,
                order_owner=owner,
            )
            raise PaymentServiceError(
                "Order belongs to a different account",
                error_code="order_mismatch",
                recoverable=False,
            )

        await self._grant_pro(user_id, source="capture", reference=order_id)
        return {
            "orderId": data.get("id", order_id),
            "status": capture_status,
            "captureId": capture.get("id"),
        }

    async def verify_webhook_signature(
        self, headers: dict[str, str], event: dict[str, Any]
    ) -> bool:
        """Ask PayPal whether a webhook delivery is authentic."""
        if not settings.PAYPAL_WEBHOOK_ID:
            logger.error("PAYPAL_WEBHOOK_ID not configured, rejecting webhook")
            return False
        self._ensure_configured()

        lowered = {key.lower(): value for key, value in headers.items()}
        payload = {field: lowered.get(header) for field, header in WEBHOOK_HEADERS.items()}
        if not all(payload.values()):
            logger.warning("Webhook is missing PayPal transmission headers")
            return False

        payload["webhook_id"] = settings.PAYPAL_WEBHOOK_ID
        payload["webhook_event"] = event

        async with self._client() as client:
            token = await self._get_access_token(client)
            response = await self._request_with_retry(
                client,
                "POST",
                "/v1/notifications/verify-webhook-signature",
                "verify_webhook",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )

        if response.status_code != 200:
            logger.warning(
                "PayPal webhook verification call failed", status_code=response.status_code
            )
            return False

        return response.json().get("verification_status") == "SUCCESS"

    async def handle_webhook_event(self, event: dict[str, Any]) -> bool:
        """
        Apply a verified webhook event.

        Returns:
            True if the event changed anything, False if it was ignored
        """
        event_type = event.get("event_type")
        if event_type != CAPTURE_COMPLETED:
            logger.info("Ignoring PayPal webhook event", event_type=event_type)
            return False

        user_id = (event.get("resource") or {}).get("custom_id")
        if not user_id:
            logger.warning("Capture event without custom_id", event_id=event.get("id"))
            return False

        await self._grant_pro(user_id, source="webhook", reference=event.get("id"))
        return True

    async def _grant_pro(self, user_id: str, *, source: str, reference: str | None) -> None:
        await self.profiles.set_pro(user_id)
        await self.notifier.create_notification(
            user_id,
            "Welcome to Pro!",
            "Your payment was successful. You now have access to all Pro features.",
            "success",
        )
        logger.info("Pro upgrade applied", user_id=user_id, source=source, reference=reference)


def _first_capture(order: dict[str, Any]) -> dict[str, Any]:
    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            return captures[0]
    return {}


paypal_service = PayPalService()

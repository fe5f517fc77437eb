"""
Hosted checkout creation through the Lemon Squeezy API.

The provider call is wrapped in retry_with_backoff: timeouts, network
errors and 5xx responses are retried, everything else fails the request.
"""

import json
from decimal import ROUND_HALF_UP, Decimal

import httpx

from assignhub.config import settings
from assignhub.features.payments.domain.models import CheckoutRequest, CheckoutResponse
from assignhub.infrastructure.observability.logging import get_logger
from assignhub.utils.retry import RetryPolicy

logger = get_logger(__name__)

REQUEST_TIMEOUT = 10  # seconds
SERVER_ERROR_STATUSES = frozenset(range(500, 600))
JSON_API = "application/vnd.api+json"
RECEIPT_THANK_YOU_NOTE = (
    "Thank you for your payment! Your assignment will be processed shortly."
)


class CheckoutError(Exception):
    """Checkout could not be created."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _to_cents(price: Decimal) -> int:
    return int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class LemonSqueezyCheckoutService:
    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy(retryable_statuses=SERVER_ERROR_STATUSES)
        self._transport = transport

    def build_checkout_payload(self, request: CheckoutRequest, origin: str | None) -> dict:
        """JSON:API document for POST /v1/checkouts."""
        origin = (origin or "").rstrip("/")
        return {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "custom_price": _to_cents(request.price),
                    "checkout_data": {
                        "email": request.student_email or "",
                        "custom": {"assignment_id": request.assignment_id},
                    },
                    "checkout_options": {"embed": False, "media": False, "logo": True},
                    "product_options": {
                        "name": request.assignment_title,
                        "enabled_variants": [],
                        "redirect_url": (
                            f"{origin}/dashboard?payment=success&assignment={request.assignment_id}"
                        ),
                        "receipt_link_url": f"{origin}/dashboard",
                        "receipt_thank_you_note": RECEIPT_THANK_YOU_NOTE,
                        "receipt_button_text": "Go to Dashboard",
                    },
                    "test_mode": settings.LEMON_SQUEEZY_TEST_MODE,
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": settings.LEMON_SQUEEZY_STORE_ID}},
                    "variant": {
                        "data": {"type": "variants", "id": settings.LEMON_SQUEEZY_VARIANT_ID}
                    },
                },
            }
        }

    async def create_checkout(
        self, request: CheckoutRequest, origin: str | None = None
    ) -> CheckoutResponse:
        api_key = settings.LEMON_SQUEEZY_API_KEY
        if not api_key or not settings.LEMON_SQUEEZY_STORE_ID:
            raise CheckoutError("Lemon Squeezy credentials not configured")

        logger.info("Creating Lemon Squeezy checkout", assignment_id=request.assignment_id)

        url = f"{settings.LEMON_SQUEEZY_API_URL.rstrip('/')}/checkouts"
        body = json.dumps(self.build_checkout_payload(request, origin))
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": JSON_API,
            "Accept": JSON_API,
        }

        async def _post() -> dict:
            async with httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(url, content=body, headers=headers)
            response.raise_for_status()
            return response.json()

        try:
            session = await self.retry_policy.run(_post)
        except httpx.HTTPStatusError as e:
            logger.error(
                "Lemon Squeezy API error",
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise CheckoutError(
                f"Lemon Squeezy API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Lemon Squeezy API unreachable", error=str(e))
            raise CheckoutError("Lemon Squeezy API unreachable") from e
        except ValueError as e:
            logger.error("Lemon Squeezy returned invalid JSON", error=str(e))
            raise CheckoutError("Unexpected Lemon Squeezy response") from e

        try:
            data = session["data"]
            result = CheckoutResponse(
                checkout_url=data["attributes"]["url"], checkout_id=str(data["id"])
            )
        except (KeyError, TypeError) as e:
            logger.error("Unexpected Lemon Squeezy checkout response", error=str(e))
            raise CheckoutError("Unexpected Lemon Squeezy response") from e

        logger.info("Checkout session created", checkout_id=result.checkout_id)
        return result


checkout_service = LemonSqueezyCheckoutService()

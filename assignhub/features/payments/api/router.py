"""
Payment routes: the Lemon Squeezy webhook and hosted checkout creation.

Both endpoints are called cross-origin (the webhook by the provider, the
checkout by the web client), so they answer preflight requests with
permissive CORS headers.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from assignhub.auth.verify import current_user_id
from assignhub.features.payments.checkout_service import (
    CheckoutError,
    LemonSqueezyCheckoutService,
    checkout_service,
)
from assignhub.features.payments.domain.models import CheckoutRequest
from assignhub.features.payments.webhook_service import (
    SIGNATURE_HEADER,
    LemonSqueezyWebhookService,
    webhook_service,
)

router = APIRouter(tags=["payments"])

WEBHOOK_PATH = "/lemon-squeezy-webhook"
CHECKOUT_PATH = "/create-lemon-squeezy-checkout"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def get_webhook_service() -> LemonSqueezyWebhookService:
    return webhook_service


def get_checkout_service() -> LemonSqueezyCheckoutService:
    return checkout_service


def _preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.options(WEBHOOK_PATH)
async def webhook_preflight():
    return _preflight()


@router.post(WEBHOOK_PATH)
async def lemon_squeezy_webhook(
    request: Request,
    service: LemonSqueezyWebhookService = Depends(get_webhook_service),
):
    # Signature is computed over the raw, unparsed body
    raw = await request.body()
    result = await service.handle(raw, request.headers.get(SIGNATURE_HEADER))
    return PlainTextResponse(result.body, status_code=result.status_code)


@router.api_route(WEBHOOK_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def webhook_method_not_allowed():
    return PlainTextResponse("Method not allowed", status_code=status.HTTP_405_METHOD_NOT_ALLOWED)


@router.options(CHECKOUT_PATH)
async def checkout_preflight():
    return _preflight()


@router.post(CHECKOUT_PATH)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    _user_id: str = Depends(current_user_id),
    service: LemonSqueezyCheckoutService = Depends(get_checkout_service),
):
    try:
        result = await service.create_checkout(body, origin=request.headers.get("origin"))
    except CheckoutError as e:
        return JSONResponse(
            {"error": str(e)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=CORS_HEADERS,
        )
    return JSONResponse(result.model_dump(), headers=CORS_HEADERS)

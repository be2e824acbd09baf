from fastapi import APIRouter, Depends, Header, Request

from libs.common import ServiceError, to_http_exception

from services.merchant.app.core.BillingService import BillingService
from services.merchant.app.dependencies import get_billing_service
from services.merchant.app.schemas.response import WebhookResponse

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Payment provider events.

    The raw body is verified against the `stripe-signature` header before
    anything is applied.
    """
    payload = await request.body()
    try:
        return await billing_service.handle_webhook(payload, stripe_signature)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

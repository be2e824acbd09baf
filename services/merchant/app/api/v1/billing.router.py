from typing import Tuple

from fastapi import APIRouter, Depends

from libs.common import AuditLogger, ServiceError, get_request_audit, to_http_exception

from services.merchant.app.core.BillingService import BillingService
from services.merchant.app.dependencies import get_billing_service, merchant_only
from services.merchant.app.schemas.response import (
    CheckoutResponse,
    PortalResponse,
    SubscriptionResponse,
)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    responses={
        503: {
            "description": "Billing is not configured",
            "content": {
                "application/json": {
                    "example": {"detail": {"code": "ERR-UNAVAILABLE", "message": "Billing is not configured"}}
                }
            },
        }
    },
)
async def checkout(
    current_user: Tuple[str, int] = Depends(merchant_only),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Start the $9.99/month subscription with a 180 day free trial.

    **Response:**
    - `url`: hosted checkout page to redirect to
    - `sessionId`: checkout session id
    """
    _, user_id = current_user
    try:
        return await billing_service.checkout(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/portal", response_model=PortalResponse)
async def portal(
    current_user: Tuple[str, int] = Depends(merchant_only),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Billing portal for payment methods and invoices."""
    _, user_id = current_user
    try:
        return PortalResponse(url=await billing_service.portal(user_id))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    current_user: Tuple[str, int] = Depends(merchant_only),
    billing_service: BillingService = Depends(get_billing_service),
):
    _, user_id = current_user
    try:
        return await billing_service.subscription(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel(
    current_user: Tuple[str, int] = Depends(merchant_only),
    billing_service: BillingService = Depends(get_billing_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Cancel at the end of the current period."""
    subject_type, user_id = current_user
    try:
        await billing_service.set_cancel_at_period_end(user_id, True, audit=audit.with_user(user_id, role=subject_type))
        return await billing_service.subscription(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/resume", response_model=SubscriptionResponse)
async def resume(
    current_user: Tuple[str, int] = Depends(merchant_only),
    billing_service: BillingService = Depends(get_billing_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Undo a pending cancellation."""
    subject_type, user_id = current_user
    try:
        await billing_service.set_cancel_at_period_end(user_id, False, audit=audit.with_user(user_id, role=subject_type))
        return await billing_service.subscription(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


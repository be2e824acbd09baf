from fastapi import APIRouter, Depends

from libs.common import AuditLogger, ServiceError, get_request_audit, to_http_exception
from libs.schemas import Merchant, MerchantReferral

from services.merchant.app.core.MerchantReferralService import MerchantReferralService
from services.merchant.app.dependencies import get_merchant_referral_service, get_subscribed_merchant
from services.merchant.app.schemas.request import MerchantReferralCreateSchema
from services.merchant.app.schemas.response import (
    MerchantReferralClaimResponse,
    MerchantReferralListResponse,
    MessageResponse,
)

router = APIRouter(prefix="/merchant/referrals", tags=["Merchant Referrals"])


@router.post("", response_model=MerchantReferral)
async def create_referral(
    payload: MerchantReferralCreateSchema,
    merchant: Merchant = Depends(get_subscribed_merchant),
    referral_service: MerchantReferralService = Depends(get_merchant_referral_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Refer another restaurant. At most 10 referrals a day.

    The referrer earns 3 free months once the restaurant converts, the
    restaurant gets a 9 month trial.
    """
    try:
        return await referral_service.create_referral(
            merchant,
            payload.model_dump(),
            audit=audit.with_user(merchant.userId, role="merchant"),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("", response_model=MerchantReferralListResponse)
async def list_referrals(
    merchant: Merchant = Depends(get_subscribed_merchant),
    referral_service: MerchantReferralService = Depends(get_merchant_referral_service),
):
    """
    Referrals of the merchant with conversion stats.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    return await referral_service.list_referrals(merchant)


@router.get("/{referral_id}", response_model=MerchantReferral)
async def get_referral(
    referral_id: int,
    merchant: Merchant = Depends(get_subscribed_merchant),
    referral_service: MerchantReferralService = Depends(get_merchant_referral_service),
):
    try:
        return await referral_service.get_referral(merchant, referral_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{referral_id}/claim", response_model=MerchantReferralClaimResponse)
async def claim_reward(
    referral_id: int,
    merchant: Merchant = Depends(get_subscribed_merchant),
    referral_service: MerchantReferralService = Depends(get_merchant_referral_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Apply the free months of a converted referral to the subscription (12 months a year at most)."""
    try:
        return await referral_service.claim_reward(
            merchant, referral_id, audit=audit.with_user(merchant.userId, role="merchant")
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{referral_id}", response_model=MessageResponse)
async def delete_referral(
    referral_id: int,
    merchant: Merchant = Depends(get_subscribed_merchant),
    referral_service: MerchantReferralService = Depends(get_merchant_referral_service),
):
    """Withdraw a referral that is still PENDING."""
    try:
        await referral_service.delete_referral(merchant, referral_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message="Referral deleted successfully")

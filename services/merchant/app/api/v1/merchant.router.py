from typing import Tuple

from fastapi import APIRouter, Depends

from libs.common import AuditLogger, ServiceError, get_request_audit, to_http_exception
from libs.schemas import Merchant

from services.merchant.app.core.MerchantService import MerchantService
from services.merchant.app.dependencies import get_merchant_service, merchant_only
from services.merchant.app.schemas.request import MerchantUpdateSchema, OnboardingCompleteSchema, OnboardingStepSchema
from services.merchant.app.schemas.response import OnboardingStatusResponse

router = APIRouter(prefix="/merchant", tags=["Merchant"])


@router.get("/me", response_model=Merchant)
async def get_me(
    current_user: Tuple[str, int] = Depends(merchant_only),
    merchant_service: MerchantService = Depends(get_merchant_service),
):
    """
    Merchant profile with locations, business metrics, approval and subscription status.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    _, user_id = current_user
    try:
        return await merchant_service.get_merchant(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/me", response_model=Merchant)
async def update_me(
    payload: MerchantUpdateSchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    merchant_service: MerchantService = Depends(get_merchant_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Update description, logo, contact email/phone or website."""
    subject_type, user_id = current_user
    try:
        return await merchant_service.update_profile(
            user_id,
            payload.model_dump(exclude_unset=True),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/onboarding", response_model=OnboardingStatusResponse)
async def get_onboarding(
    current_user: Tuple[str, int] = Depends(merchant_only),
    merchant_service: MerchantService = Depends(get_merchant_service),
):
    _, user_id = current_user
    try:
        return await merchant_service.onboarding_status(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/onboarding", response_model=Merchant)
async def save_onboarding_step(
    payload: OnboardingStepSchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    merchant_service: MerchantService = Depends(get_merchant_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Save one onboarding step.

    - step 1: `businessName` (2+ characters), `description`
    - step 2: `address`, `city`, `state` (2 letters), `zipCode`, `phone`
    - step 3: `avgOrderValue` (> 0), `priceTier` ($ - $$$$), `seatingCapacity`
      (SMALL | MEDIUM | LARGE), `cateringAvailable`, `offersDelivery`
    """
    subject_type, user_id = current_user
    try:
        return await merchant_service.save_step(
            user_id,
            payload.step,
            payload.data,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/onboarding/complete", response_model=Merchant)
async def complete_onboarding(
    payload: OnboardingCompleteSchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    merchant_service: MerchantService = Depends(get_merchant_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Finish onboarding. Requires steps 1-3 and `acceptSecurityTerms: true`."""
    subject_type, user_id = current_user
    try:
        return await merchant_service.complete_onboarding(
            user_id,
            payload.acceptSecurityTerms,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

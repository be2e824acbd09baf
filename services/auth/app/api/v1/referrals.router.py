from fastapi import APIRouter, Body, Depends, Query, status

from libs.common import CurrentUser, ServiceError, to_http_exception

from services.auth.app.core.ReferralService import ReferralService
from services.auth.app.dependencies import get_referral_service
from services.auth.app.schemas.request import ReferralInviteSchema
from services.auth.app.schemas.response import MessageResponse, ReferralOverviewResponse, ReferralValidateResponse

router = APIRouter(prefix="/referrals", tags=["Referrals"])


@router.get("", response_model=ReferralOverviewResponse)
async def get_referrals(
    current_user: CurrentUser,
    referral_service: ReferralService = Depends(get_referral_service),
):
    """
    Referral code, share link, stats and the 10 most recent referrals.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    _, user_id = current_user
    try:
        return await referral_service.overview(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/invite", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def invite(
    current_user: CurrentUser,
    payload: ReferralInviteSchema | None = Body(default=None),
    referral_service: ReferralService = Depends(get_referral_service),
):
    """Email a referral invitation to a colleague."""
    _, user_id = current_user
    try:
        referral = await referral_service.invite(user_id, payload.email if payload else None)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message=f"Invitation sent to {referral.referredEmail}")


@router.get("/validate", response_model=ReferralValidateResponse)
async def validate(
    code: str | None = Query(default=None, description="referral code"),
    referral_service: ReferralService = Depends(get_referral_service),
):
    """
    Resolve a referral code to its owner.

    **Query Parameters:**
    - `code`: referral code from a share link
    """
    try:
        return await referral_service.validate(code)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

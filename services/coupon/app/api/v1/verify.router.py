from typing import Tuple

from fastapi import APIRouter, Depends

from libs.common import AuditLogger, RateLimit, ServiceError, get_request_audit, to_http_exception

from services.coupon.app.core.IdentityService import IdentityService
from services.coupon.app.core.RedeemService import RedeemService
from services.coupon.app.dependencies import get_identity_service, get_redeem_service, merchant_only
from services.coupon.app.schemas.request import CouponRedeemSchema
from services.coupon.app.schemas.response import CouponPreviewResponse, IdentityVerifiedResponse, RedeemResponse

router = APIRouter(prefix="/verify", tags=["Verify"])


@router.get(
    "/coupon/{code}",
    response_model=CouponPreviewResponse,
    responses={
        403: {
            "description": "Coupon belongs to another merchant",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "code": "ERR-FORBIDDEN",
                            "message": "This coupon is not for your restaurant",
                            "result": "INVALID_DATA",
                        }
                    }
                }
            },
        }
    },
)
async def preview_coupon(
    code: str,
    current_user: Tuple[str, int] = Depends(merchant_only),
    redeem_service: RedeemService = Depends(get_redeem_service),
):
    """
    Check a scanned coupon before redeeming it.

    **Headers:**
    - `Authorization`: Bearer {accessToken}

    **Response:**
    - 200 with the coupon, employee, discount and monthly usage
    - errors carry `result`: NOT_FOUND, INVALID_DATA, ALREADY_REDEEMED,
      EXPIRED, CANCELLED or EMPLOYEE_INACTIVE
    """
    _, user_id = current_user
    try:
        return await redeem_service.preview(user_id, code)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/coupon/{code}/redeem",
    response_model=RedeemResponse,
    dependencies=[Depends(RateLimit("strict"))],
)
async def redeem_coupon(
    code: str,
    payload: CouponRedeemSchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    redeem_service: RedeemService = Depends(get_redeem_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Redeem a coupon at the till.

    - The first redemption of an employee gets the first-time bonus
    - `orderAmount` adds the `savings` figure
    - 400 when the monthly limit is used up, 409 on a concurrent redemption
    """
    subject_type, user_id = current_user
    try:
        return await redeem_service.redeem(
            user_id,
            code,
            notes=payload.notes,
            order_amount=payload.orderAmount,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{token}", response_model=IdentityVerifiedResponse)
async def verify_identity(
    token: str,
    current_user: Tuple[str, int] = Depends(merchant_only),
    identity_service: IdentityService = Depends(get_identity_service),
):
    """
    Confirm an employee from a scanned verification token.

    The response carries the discount the employee's company gets at the
    calling merchant.
    """
    _, user_id = current_user
    try:
        return await identity_service.verify_token(token, merchant_user_id=user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

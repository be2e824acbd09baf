import io
from typing import List, Tuple

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from libs.common import AuditLogger, RateLimit, ServiceError, get_request_audit, to_http_exception
from libs.schemas import ClaimedCoupon, ModerationAction

from services.admin.app.core.ModerationService import ModerationService
from services.admin.app.dependencies import get_moderation_service
from services.coupon.app.core.ClaimService import ClaimService
from services.coupon.app.core.IdentityService import IdentityService
from services.coupon.app.core.QrCodeService import QrCodeService
from services.coupon.app.dependencies import employee_only, get_claim_service, get_identity_service, get_qr_code_service
from services.coupon.app.schemas.request import AppealSchema, CouponClaimSchema
from services.coupon.app.schemas.response import (
    ClaimedMerchantsResponse,
    ExploreMerchantItem,
    VerificationTokenResponse,
    WalletItem,
    WalletResponse,
)

router = APIRouter(prefix="/employee", tags=["Employee"])


@router.post(
    "/claim",
    response_model=ClaimedCoupon,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(RateLimit("couponClaim"))],
    responses={
        400: {
            "description": "Merchant not accepting coupons or already claimed",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "code": "ERR-DUP-VALUE",
                            "message": "You already have an active coupon for this restaurant",
                        }
                    }
                }
            },
        }
    },
)
async def claim_coupon(
    payload: CouponClaimSchema,
    current_user: Tuple[str, int] = Depends(employee_only),
    claim_service: ClaimService = Depends(get_claim_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Claim a merchant discount as a coupon.

    **Headers:**
    - `Authorization`: Bearer {accessToken}

    **Response:**
    - 201 with the new ACTIVE coupon (8-character code, QR image stored)
    - 403 when the employee account cannot use coupons
    """
    subject_type, user_id = current_user
    try:
        return await claim_service.claim(
            user_id,
            payload.merchantId,
            payload.discountId,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/wallet", response_model=WalletResponse)
async def wallet(
    current_user: Tuple[str, int] = Depends(employee_only),
    claim_service: ClaimService = Depends(get_claim_service),
):
    """
    ACTIVE, unexpired coupons with their monthly usage.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    _, user_id = current_user
    try:
        items = await claim_service.wallet(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return WalletResponse(coupons=items, total=len(items))


@router.get("/coupon/{code}", response_model=WalletItem)
async def coupon_detail(
    code: str,
    current_user: Tuple[str, int] = Depends(employee_only),
    claim_service: ClaimService = Depends(get_claim_service),
):
    _, user_id = current_user
    try:
        return await claim_service.coupon_detail(user_id, code)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/coupon/{code}/qr")
async def coupon_qr(
    code: str,
    current_user: Tuple[str, int] = Depends(employee_only),
    claim_service: ClaimService = Depends(get_claim_service),
    qr_service: QrCodeService = Depends(get_qr_code_service),
):
    """
    PNG QR code of the coupon's verification URL.

    **Response:**
    - `image/png`
    """
    _, user_id = current_user
    try:
        coupon = await claim_service.get_own_coupon(user_id, code)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return StreamingResponse(io.BytesIO(qr_service.image(coupon)), media_type="image/png")


@router.post("/coupon/{code}/qr", response_model=ClaimedCoupon)
async def regenerate_coupon_qr(
    code: str,
    current_user: Tuple[str, int] = Depends(employee_only),
    claim_service: ClaimService = Depends(get_claim_service),
    qr_service: QrCodeService = Depends(get_qr_code_service),
):
    """Render and store a new QR image for the coupon."""
    _, user_id = current_user
    try:
        coupon = await claim_service.get_own_coupon(user_id, code)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return await qr_service.regenerate(coupon)


@router.get("/merchants", response_model=List[ExploreMerchantItem])
async def explore_merchants(
    current_user: Tuple[str, int] = Depends(employee_only),
    search: str | None = Query(default=None, description="business name contains (case-insensitive)"),
    lat: float | None = Query(default=None, ge=-90, le=90, description="caller latitude"),
    lng: float | None = Query(default=None, ge=-180, le=180, description="caller longitude"),
    claim_service: ClaimService = Depends(get_claim_service),
):
    """
    ACTIVE merchants with the caller's best discount.

    **Query Parameters:**
    - `search`: filter by business name
    - `lat`, `lng`: attach the distance in miles and sort nearest first
    """
    _, user_id = current_user
    try:
        return await claim_service.explore_merchants(user_id, search, lat, lng)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/claimed-merchants", response_model=ClaimedMerchantsResponse)
async def claimed_merchants(
    current_user: Tuple[str, int] = Depends(employee_only),
    claim_service: ClaimService = Depends(get_claim_service),
):
    _, user_id = current_user
    try:
        merchant_ids = await claim_service.claimed_merchant_ids(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return ClaimedMerchantsResponse(merchantIds=sorted(merchant_ids))


@router.post("/verification-token", response_model=VerificationTokenResponse)
async def create_verification_token(
    current_user: Tuple[str, int] = Depends(employee_only),
    identity_service: IdentityService = Depends(get_identity_service),
):
    """
    Short-lived token a merchant scans to confirm the caller works at a partner company.

    **Response:**
    - `token`: valid for 10 minutes
    - `qrUrl`, `walletUrl`: links embedding the token
    """
    _, user_id = current_user
    try:
        return await identity_service.create_verification_token(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/appeals/{action_id}", response_model=ModerationAction)
async def submit_appeal(
    action_id: int,
    payload: AppealSchema,
    current_user: Tuple[str, int] = Depends(employee_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Appeal a moderation action taken against the caller.

    Only appealable actions inside their appeal window, once.
    """
    subject_type, user_id = current_user
    try:
        return await moderation_service.submit_appeal(
            user_id,
            action_id,
            payload.message,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

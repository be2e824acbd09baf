from typing import Tuple

from fastapi import APIRouter, Depends

from libs.common import ServiceError, to_http_exception

from services.coupon.app.core.IdentityService import IdentityService
from services.coupon.app.dependencies import employee_only, get_identity_service, merchant_only
from services.coupon.app.schemas.request import PassVerifySchema
from services.coupon.app.schemas.response import MessageResponse, PassResponse, PassVerifyResponse

router = APIRouter(prefix="/passes", tags=["Passes"])


@router.get("/me", response_model=PassResponse)
async def my_pass(
    current_user: Tuple[str, int] = Depends(employee_only),
    identity_service: IdentityService = Depends(get_identity_service),
):
    """
    The caller's employee pass, created on first request.

    **Response:**
    - `pass`: pass record
    - `qrPayload`: signed data to encode in the pass QR
    """
    _, user_id = current_user
    try:
        return await identity_service.get_or_create_pass(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/me", response_model=MessageResponse)
async def revoke_my_pass(
    current_user: Tuple[str, int] = Depends(employee_only),
    identity_service: IdentityService = Depends(get_identity_service),
):
    _, user_id = current_user
    try:
        await identity_service.revoke_pass(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message="Pass revoked")


@router.post("/verify", response_model=PassVerifyResponse)
async def verify_pass(
    payload: PassVerifySchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    identity_service: IdentityService = Depends(get_identity_service),
):
    """
    Verify a scanned employee pass.

    - 404 unknown or revoked pass
    - 400 signature mismatch
    - 403 employee not ACTIVE
    """
    try:
        return await identity_service.verify_pass(payload.passId, payload.signature)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

from fastapi import APIRouter, Body, Depends, Query

from libs.common import AuditLogger, RateLimit, ServiceError, get_request_audit, to_http_exception

from services.auth.app.core.VerificationService import VerificationService
from services.auth.app.dependencies import get_verification_service
from services.auth.app.schemas.request import EmailSchema, ResetPasswordSchema
from services.auth.app.schemas.response import MessageResponse

router = APIRouter(prefix="/auth", tags=["Verification"])


@router.get("/verify-email", response_model=MessageResponse)
async def verify_email(
    token: str | None = Query(default=None, description="token from the verification email"),
    verification_service: VerificationService = Depends(get_verification_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Confirm the account email.

    **Query Parameters:**
    - `token`: verification token (valid for 24 hours)
    """
    try:
        message = await verification_service.verify_email(token, audit=audit)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message=message)


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit("strict"))],
)
async def resend_verification(
    payload: EmailSchema | None = Body(default=None),
    verification_service: VerificationService = Depends(get_verification_service),
):
    """Send a fresh verification link. Unknown emails get the same answer."""
    try:
        message = await verification_service.resend_verification(payload.email if payload else None)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message=message)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit("passwordReset"))],
)
async def forgot_password(
    payload: EmailSchema | None = Body(default=None),
    verification_service: VerificationService = Depends(get_verification_service),
):
    """Email a password reset link valid for one hour."""
    try:
        message = await verification_service.forgot_password(payload.email if payload else None)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordSchema | None = Body(default=None),
    verification_service: VerificationService = Depends(get_verification_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    try:
        message = await verification_service.reset_password(
            token=payload.token if payload else None,
            password=payload.password if payload else None,
            audit=audit,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message=message)

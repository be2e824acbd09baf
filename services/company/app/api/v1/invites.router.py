from typing import List

from fastapi import APIRouter, Depends, Query, status

from libs.common import AuditLogger, CurrentUser, ServiceError, get_request_audit, to_http_exception
from libs.schemas import InviteCode

from services.company.app.core.InviteService import InviteService
from services.company.app.dependencies import get_invite_service
from services.company.app.schemas.request import InviteCreateSchema
from services.company.app.schemas.response import InviteCreateResponse, MessageResponse

router = APIRouter(prefix="/company/invites", tags=["Company Invites"])


@router.get("", response_model=List[InviteCode])
async def list_invites(
    current_user: CurrentUser,
    status: str | None = Query(default=None, description="ACTIVE | USED | EXPIRED | REVOKED"),
    invite_service: InviteService = Depends(get_invite_service),
):
    """
    Up to 100 invites, newest first.

    **Query Parameters:**
    - `status`: filter; ACTIVE invites past their expiry are reported as EXPIRED
    """
    _, user_id = current_user
    try:
        return await invite_service.list_invites(user_id, status)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "",
    response_model=InviteCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {
            "description": "Invalid count, email or expiry",
            "content": {
                "application/json": {
                    "example": {"detail": {"code": "ERR-IVD-VALUE", "message": "count must be between 1 and 100"}}
                }
            },
        },
    },
)
async def create_invites(
    payload: InviteCreateSchema,
    current_user: CurrentUser,
    invite_service: InviteService = Depends(get_invite_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Create invite codes (manageInvites).

    Emails that already hold an active invite are skipped and listed in `skipped`.
    """
    subject_type, user_id = current_user
    try:
        result = await invite_service.create_invites(
            user_id,
            count=payload.count,
            emails=payload.emails,
            expires_in_days=payload.expiresInDays,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

    return InviteCreateResponse(
        message=f"Created {len(result['invites'])} invites",
        invites=result["invites"],
        skipped=result["skipped"],
    )


@router.post("/{invite_id}/resend", response_model=MessageResponse)
async def resend_invite(
    invite_id: int,
    current_user: CurrentUser,
    invite_service: InviteService = Depends(get_invite_service),
):
    _, user_id = current_user
    try:
        invite = await invite_service.resend(user_id, invite_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message=f"Invite resent to {invite.email}")


@router.delete("/{invite_id}", response_model=MessageResponse)
async def revoke_invite(
    invite_id: int,
    current_user: CurrentUser,
    invite_service: InviteService = Depends(get_invite_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Revoke an invite. Used invites cannot be revoked."""
    subject_type, user_id = current_user
    try:
        await invite_service.revoke(user_id, invite_id, audit=audit.with_user(user_id, role=subject_type))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message="Invite revoked")

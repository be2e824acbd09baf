from typing import Tuple

from fastapi import APIRouter, Depends

from libs.common import AuditLogger, get_request_audit

from services.admin.app.core.ModerationService import ModerationService
from services.admin.app.dependencies import get_moderation_service, platform_admin_only
from services.admin.app.schemas.response import ExpireSuspensionsResponse

router = APIRouter(prefix="/admin/jobs", tags=["Admin Jobs"])


@router.post("/expire-suspensions", response_model=ExpireSuspensionsResponse)
async def expire_suspensions(
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Reactivate employees whose suspension has ended.

    Same job as the `corbez-expire-suspensions` console script.
    """
    subject_type, user_id = current_user
    count = await moderation_service.process_expired_suspensions(audit=audit.with_user(user_id, role=subject_type))
    return ExpireSuspensionsResponse(reactivated=count)

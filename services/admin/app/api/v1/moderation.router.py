from typing import List, Tuple

from fastapi import APIRouter, Depends

from libs.common import AuditLogger, ServiceError, get_request_audit, to_http_exception
from libs.schemas import ModerationAction, ModerationDuration, ModerationTarget

from services.admin.app.core.ModerationService import ModerationService
from services.admin.app.dependencies import get_moderation_service, platform_admin_only
from services.admin.app.schemas.request import AppealResolveSchema, ModerationRequestSchema, SuspendRequestSchema

router = APIRouter(prefix="/admin", tags=["Admin Moderation"])


@router.post("/employees/{employee_id}/warn", response_model=ModerationAction)
async def warn_employee(
    employee_id: int,
    payload: ModerationRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Warn an employee.

    The third warning also suspends the employee for 7 days.
    """
    subject_type, user_id = current_user
    try:
        return await moderation_service.warn_employee(
            user_id,
            employee_id,
            payload.reason,
            payload.details,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/employees/{employee_id}/suspend", response_model=ModerationAction)
async def suspend_employee(
    employee_id: int,
    payload: SuspendRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Suspend an employee. Their ACTIVE coupons are cancelled.

    - `durationUnit`: hours, days, weeks, months or permanent
    - appealable for 14 days
    """
    subject_type, user_id = current_user
    try:
        return await moderation_service.suspend_employee(
            user_id,
            employee_id,
            payload.reason,
            payload.details,
            ModerationDuration(value=payload.durationValue, unit=payload.durationUnit),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/employees/{employee_id}/unsuspend", response_model=ModerationAction)
async def unsuspend_employee(
    employee_id: int,
    payload: ModerationRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        return await moderation_service.unsuspend_employee(
            user_id, employee_id, payload.details, audit=audit.with_user(user_id, role=subject_type)
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/employees/{employee_id}/ban", response_model=ModerationAction)
async def ban_employee(
    employee_id: int,
    payload: ModerationRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Ban an employee for good. Appealable for 30 days."""
    subject_type, user_id = current_user
    try:
        return await moderation_service.ban_employee(
            user_id,
            employee_id,
            payload.reason,
            payload.details,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/companies/{company_id}/suspend", response_model=ModerationAction)
async def suspend_company(
    company_id: int,
    payload: ModerationRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Suspend a company; its ACTIVE employees become INACTIVE."""
    subject_type, user_id = current_user
    try:
        return await moderation_service.suspend_company(
            user_id,
            company_id,
            payload.reason,
            payload.details,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/moderation/{target_type}/{target_id}", response_model=List[ModerationAction])
async def moderation_history(
    target_type: ModerationTarget,
    target_id: int,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
):
    """Last 50 actions on one target, newest first."""
    return await moderation_service.history(target_type, target_id)


@router.get("/appeals", response_model=List[ModerationAction])
async def pending_appeals(
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
):
    return await moderation_service.pending_appeals()


@router.post("/appeals/{action_id}/resolve", response_model=ModerationAction)
async def resolve_appeal(
    action_id: int,
    payload: AppealResolveSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Approve or reject a pending appeal.

    Approval reverses the suspension or ban the appeal is about.
    """
    subject_type, user_id = current_user
    try:
        return await moderation_service.resolve_appeal(
            user_id, action_id, payload.approve, audit=audit.with_user(user_id, role=subject_type)
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

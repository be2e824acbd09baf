from typing import List

from fastapi import APIRouter, Depends, status

from libs.common import AuditLogger, CurrentUser, ServiceError, get_request_audit, to_http_exception
from libs.schemas import CompanyAdmin

from services.company.app.core.CompanyService import CompanyService
from services.company.app.dependencies import get_company_service
from services.company.app.schemas.request import AdminCreateSchema, AdminUpdateSchema
from services.company.app.schemas.response import MessageResponse

router = APIRouter(prefix="/company/admins", tags=["Company Admins"])


@router.get("", response_model=List[CompanyAdmin])
async def list_admins(
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
):
    """Admins of the caller's company."""
    _, user_id = current_user
    try:
        return await company_service.list_admins(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=CompanyAdmin, status_code=status.HTTP_201_CREATED)
async def add_admin(
    payload: AdminCreateSchema,
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Make a registered user an admin of the company (manageAdmins).

    Only owners can add owners. Permissions start from the role defaults.
    """
    subject_type, user_id = current_user
    try:
        return await company_service.add_admin(
            user_id,
            payload.email,
            payload.role,
            payload.title,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/{admin_id}", response_model=CompanyAdmin)
async def update_admin(
    admin_id: int,
    payload: AdminUpdateSchema,
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        return await company_service.update_admin(
            user_id,
            admin_id,
            payload.model_dump(exclude_unset=True),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{admin_id}", response_model=MessageResponse)
async def remove_admin(
    admin_id: int,
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Remove an admin. The last active owner cannot be removed."""
    subject_type, user_id = current_user
    try:
        await company_service.remove_admin(user_id, admin_id, audit=audit.with_user(user_id, role=subject_type))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message="Admin removed")

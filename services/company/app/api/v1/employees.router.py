from fastapi import APIRouter, Depends, Query, Response
from fastapi_pagination import Page

from libs.common import AuditLogger, CurrentUser, ServiceError, get_request_audit, to_http_exception

from services.company.app.core.CompanyService import CompanyService
from services.company.app.core.ReportService import ReportService
from services.company.app.dependencies import get_company_service, get_report_service
from services.company.app.schemas.request import EmployeeUpdateSchema
from services.company.app.schemas.response import EmployeeListItem, MessageResponse

router = APIRouter(prefix="/company/employees", tags=["Company Employees"])


@router.get("", response_model=Page[EmployeeListItem])
async def list_employees(
    current_user: CurrentUser,
    status: str | None = Query(default=None, description="filter by status"),
    search: str | None = Query(default=None, description="name or email"),
    page: int = 1,
    size: int = 20,
    company_service: CompanyService = Depends(get_company_service),
):
    """
    Company roster.

    **Headers:**
    - `Authorization`: Bearer {accessToken}

    **Query Parameters:**
    - `status`: PENDING | ACTIVE | INACTIVE | SUSPENDED | BANNED
    - `search`: case-insensitive match on full name or email
    - `page`: page number (default 1)
    - `size`: page size (default 20, at most 100)
    """
    _, user_id = current_user
    try:
        return await company_service.list_employees(user_id, status, search, page, size)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/export")
async def export_employees(
    current_user: CurrentUser,
    fmt: str = Query(default="csv", alias="format", description="csv | xlsx | pdf"),
    report_service: ReportService = Depends(get_report_service),
):
    """
    Download the roster (viewReports).

    **Response:**
    - file attachment with name, email, department, job title, status and join date
    """
    _, user_id = current_user
    try:
        export = await report_service.export_roster(user_id, fmt)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.put("/{employee_id}", response_model=EmployeeListItem)
async def update_employee(
    employee_id: int,
    payload: EmployeeUpdateSchema,
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Change an employee's status, department or job title (manageEmployees)."""
    subject_type, user_id = current_user
    try:
        return await company_service.update_employee(
            user_id,
            employee_id,
            payload.model_dump(exclude_unset=True),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{employee_id}", response_model=MessageResponse)
async def delete_employee(
    employee_id: int,
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        await company_service.delete_employee(user_id, employee_id, audit=audit.with_user(user_id, role=subject_type))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message="Employee removed")

from fastapi import APIRouter, Depends

from libs.common import AuditLogger, CurrentUser, ServiceError, get_request_audit, to_http_exception
from libs.schemas import Company

from services.company.app.core.CompanyService import CompanyService
from services.company.app.core.SavingsService import SavingsService
from services.company.app.dependencies import get_company_service, get_savings_service
from services.company.app.schemas.request import SettingsUpdateSchema
from services.company.app.schemas.response import CompanyMeResponse, SavingsResponse

router = APIRouter(prefix="/company", tags=["Company"])


@router.get("/me", response_model=CompanyMeResponse)
async def get_my_company(
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
):
    """
    Company of the signed-in admin with roster and invite counts.

    **Headers:**
    - `Authorization`: Bearer {accessToken}

    **Response:**
    - HTTP 200 OK
    - HTTP 403 Forbidden: caller is not an active company admin
    """
    _, user_id = current_user
    try:
        return await company_service.me(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/me/settings", response_model=Company)
async def update_settings(
    payload: SettingsUpdateSchema,
    current_user: CurrentUser,
    company_service: CompanyService = Depends(get_company_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Change company settings (manageAdmins)."""
    subject_type, user_id = current_user
    try:
        return await company_service.update_settings(
            user_id,
            payload.model_dump(exclude_unset=True),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/savings", response_model=SavingsResponse)
async def get_savings(
    current_user: CurrentUser,
    savings_service: SavingsService = Depends(get_savings_service),
):
    """
    Potential monthly and annual employee savings across onboarded merchants.

    Cached for five minutes per company.
    """
    _, user_id = current_user
    try:
        return await savings_service.savings(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

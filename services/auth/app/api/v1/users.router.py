from fastapi import APIRouter, Depends

from libs.common import AuditLogger, CurrentUser, ServiceError, get_request_audit, to_http_exception

from services.auth.app.core.UserService import UserService
from services.auth.app.dependencies import get_user_service
from services.auth.app.schemas.request import ProfileUpdateSchema
from services.auth.app.schemas.response import OnboardingResponse, UserProfileResponse

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserProfileResponse)
async def get_me(
    current_user: CurrentUser,
    user_service: UserService = Depends(get_user_service),
):
    """
    Profile of the signed-in user.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    _, user_id = current_user
    try:
        user = await user_service.get_user(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return UserProfileResponse.model_validate(user.model_dump())


@router.patch("/me", response_model=UserProfileResponse)
async def update_me(
    payload: ProfileUpdateSchema,
    current_user: CurrentUser,
    user_service: UserService = Depends(get_user_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Update names and contact details. Only the fields sent are changed.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    subject_type, user_id = current_user
    try:
        user = await user_service.update_profile(
            user_id,
            payload.model_dump(exclude_unset=True),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return UserProfileResponse.model_validate(user.model_dump())


@router.get("/me/onboarding", response_model=OnboardingResponse)
async def get_onboarding(
    current_user: CurrentUser,
    user_service: UserService = Depends(get_user_service),
):
    """Onboarding checklist with completion percentage."""
    _, user_id = current_user
    try:
        return await user_service.onboarding(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

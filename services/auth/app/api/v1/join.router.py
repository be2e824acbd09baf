from fastapi import APIRouter, Body, Depends, Query, status

from libs.common import AuditLogger, RateLimit, ServiceError, get_request_audit, to_http_exception

from services.auth.app.core.JoinService import JoinService, Registration
from services.auth.app.dependencies import get_join_service
from services.auth.app.schemas.request import RegisterSchema
from services.auth.app.schemas.response import RegisterResponse, SuggestCompanyResponse, VerifyInviteResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(RateLimit("auth"))],
    responses={
        400: {
            "description": "Invalid input, duplicate email or unusable invite code",
            "content": {
                "application/json": {
                    "example": {"detail": {"code": "ERR-DUP-VALUE", "message": "Email already registered"}}
                }
            },
        },
        429: {
            "description": "Too many registration attempts",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "code": "ERR-RATE-LIMITED",
                            "error": "Too many authentication attempts, please try again later",
                            "retryAfter": 900,
                        }
                    }
                }
            },
        },
    },
)
async def register(
    payload: RegisterSchema | None = Body(default=None),
    join_service: JoinService = Depends(get_join_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Create an employee, merchant or company admin account.

    Employees join a company through an invite code, or through an email
    domain whose company auto-approves sign-ups. Company admins create
    their company in the same step.

    **Response:**
    - `userId`, `email`, `role`
    - `companyJoined`: an employee record was created
    """
    form = Registration(**(payload.model_dump() if payload else {}))
    try:
        result = await join_service.register(form, audit=audit)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

    return RegisterResponse(
        message="Registration successful. Please check your email to verify your account.",
        userId=result.user.userId,
        email=result.user.email,
        role=result.user.role.value,
        companyJoined=result.companyJoined,
    )


@router.get(
    "/verify-invite",
    response_model=VerifyInviteResponse,
    dependencies=[Depends(RateLimit("default"))],
)
async def verify_invite(
    code: str | None = Query(default=None, description="invite code (XXXX-XXXX)"),
    join_service: JoinService = Depends(get_join_service),
):
    """
    Check an invite code before registration.

    **Query Parameters:**
    - `code`: invite code; case and spaces are ignored
    """
    try:
        return await join_service.verify_invite(code)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/suggest-company", response_model=SuggestCompanyResponse)
async def suggest_company(
    email: str | None = Query(default=None, description="email being registered"),
    join_service: JoinService = Depends(get_join_service),
):
    """Suggest the company that owns the email's domain."""
    try:
        return await join_service.suggest_company(email)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

from datetime import datetime, timezone

from fastapi import APIRouter, Body, Cookie, Depends, Response, status

from libs.common import AuditLogger, RateLimit, ServiceError, get_request_audit, to_http_exception, verify_refresh_token
from libs.common.auth import AuthError

from services.auth.app.core.LoginService import LoginService, LoginTokens
from services.auth.app.db.connection import settings
from services.auth.app.dependencies import get_login_service
from services.auth.app.schemas.request import LoginSchema
from services.auth.app.schemas.response import LoginResponse, MessageResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])

REFRESH_COOKIE = "X-REFRESH-TOKEN"


def _set_refresh_cookie(response: Response, refresh_token: str, expires_at: datetime) -> None:
    max_age = max(int((expires_at - datetime.now(timezone.utc)).total_seconds()), 0)
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        secure=settings.cookie_secure,  # follows ENVIRONMENT
        samesite="lax",
        max_age=max_age,
    )


def _clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(
        key=REFRESH_COOKIE,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.headers["clear-cookie"] = REFRESH_COOKIE


def _login_response(response: Response, tokens: LoginTokens) -> LoginResponse:
    _set_refresh_cookie(response, tokens.refresh_token, tokens.refresh_expires_at)
    return LoginResponse(accessToken=tokens.access_token, role=tokens.role, userName=tokens.user_name)


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(RateLimit("auth"))],
    responses={
        200: {
            "description": "Login succeeded",
            "content": {
                "application/json": {
                    "example": {
                        "accessToken": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                        "role": "EMPLOYEE",
                        "userName": "Jane Doe",
                    }
                }
            },
        },
        401: {
            "description": "Wrong email or password",
            "content": {
                "application/json": {
                    "example": {"detail": {"code": "ERR-UNAUTHORIZED", "message": "Invalid email or password"}}
                }
            },
        },
    },
)
async def login(
    response: Response,
    payload: LoginSchema | None = Body(default=None),
    login_service: LoginService = Depends(get_login_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Email and password login.

    **Response:**
    - `accessToken`: JWT access token (30 minutes)
    - `role`, `userName`
    - the refresh token (7 days) is set as the httpOnly `X-REFRESH-TOKEN` cookie
    """
    try:
        tokens = await login_service.login(
            email=payload.email if payload else None,
            password=payload.password if payload else None,
            audit=audit,
        )
    except ServiceError as exc:
        _clear_auth_cookies(response)
        raise to_http_exception(exc) from exc

    return _login_response(response, tokens)


@router.post("/refresh", response_model=LoginResponse)
async def refresh(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    login_service: LoginService = Depends(get_login_service),
):
    """Issue a new token pair from the refresh cookie."""
    try:
        tokens = await login_service.refresh(refresh_token)
    except ServiceError as exc:
        _clear_auth_cookies(response)
        raise to_http_exception(exc) from exc

    return _login_response(response, tokens)


@router.post("/logout", response_model=MessageResponse, status_code=status.HTTP_200_OK)
async def logout(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    login_service: LoginService = Depends(get_login_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Clear the refresh cookie. Always succeeds."""
    user_id = None
    if refresh_token:
        try:
            _, user_id = verify_refresh_token(refresh_token)
        except AuthError:
            user_id = None
    await login_service.logout(user_id, audit=audit)
    _clear_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")

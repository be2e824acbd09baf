"""
FastAPI용 Bearer 토큰 인증 및 역할 검사 의존성
"""
from typing import Annotated, Tuple

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from libs.common.auth import AuthError, verify_access_token
from libs.common.errors import forbidden

# Swagger UI에서 Bearer token을 입력할 수 있도록 HTTPBearer 설정
security = HTTPBearer(description="Access Token (Bearer)", auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "ERR-UNAUTHORIZED"},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(security),
) -> Tuple[str, int]:
    """
    Authorization 헤더에서 현재 사용자 정보를 가져옵니다.

    Returns:
        (subject_type, user_id) 튜플

    Raises:
        HTTPException: 토큰이 없거나 유효하지 않으면 401
    """
    if not credentials or not credentials.credentials:
        raise _unauthorized()

    try:
        return verify_access_token(credentials.credentials)
    except AuthError as e:
        raise _unauthorized() from e


# Type alias for dependency injection
CurrentUser = Annotated[Tuple[str, int], Depends(get_current_user)]


def require_roles(*subject_types: str):
    """
    지정한 subject type만 접근할 수 있도록 제한하는 의존성 팩토리

    사용법:
        current_user: Tuple[str, int] = Depends(require_roles("merchant"))
    """

    async def _guard(current_user: CurrentUser) -> Tuple[str, int]:
        subject_type, _ = current_user
        if subject_type not in subject_types:
            raise forbidden(f"{' or '.join(subject_types)} access only")
        return current_user

    return _guard

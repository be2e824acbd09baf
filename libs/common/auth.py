"""
모든 서비스가 공유하는 JWT 발급 및 검증 유틸리티
로그인과 토큰 재발급은 auth 서비스(LoginService)에서 처리합니다.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Tuple

import jwt

logger = logging.getLogger(__name__)

SUBJECT_EMPLOYEE = "employee"
SUBJECT_MERCHANT = "merchant"
SUBJECT_COMPANY_ADMIN = "company_admin"
SUBJECT_PLATFORM_ADMIN = "platform_admin"

SUBJECT_TYPES = (
    SUBJECT_EMPLOYEE,
    SUBJECT_MERCHANT,
    SUBJECT_COMPANY_ADMIN,
    SUBJECT_PLATFORM_ADMIN,
)


class AuthError(Exception):
    """인증 관련 에러"""
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
        logger.debug("AuthError: %s %s", code, message)


def subject_for_role(role: str) -> str:
    """UserRole 값(EMPLOYEE 등)을 토큰의 subject type으로 변환"""
    return role.lower()


def get_jwt_config() -> Tuple[str, str]:
    """
    환경변수에서 JWT 설정을 가져옵니다.

    Returns:
        (secret_key, algorithm) 튜플
    """
    secret_key = os.getenv("JWT_SECRET_KEY")
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")

    if not secret_key:
        # 개발용 기본값 (프로덕션에서는 반드시 JWT_SECRET_KEY 설정 필요)
        secret_key = "change-me-in-production"

    return (secret_key, algorithm)


def verify_access_token(access_token: str, secret_key: str | None = None, algorithm: str | None = None) -> Tuple[str, int]:
    """
    Access Token을 검증하고 DB 조회 없이 사용자 정보를 추출합니다.

    Args:
        access_token: 검증할 JWT 토큰
        secret_key: 서명 키 (None이면 환경변수에서 가져옴)
        algorithm: JWT 알고리즘 (None이면 환경변수에서 가져옴)

    Returns:
        (subject_type, subject_id) 튜플

    Raises:
        AuthError: 토큰이 만료되었거나 유효하지 않거나 access 토큰이 아닌 경우
    """
    if not secret_key or not algorithm:
        secret_key, algorithm = get_jwt_config()

    try:
        payload = jwt.decode(
            access_token,
            secret_key,
            algorithms=[algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("ERR-UNAUTHORIZED", "access token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthError("ERR-UNAUTHORIZED", "access token is invalid") from e

    if payload.get("type") != "access":
        raise AuthError("ERR-UNAUTHORIZED", "not an access token")

    subject_type = payload.get("sub_type")
    subject_id = payload.get("sub_id")

    if subject_type not in SUBJECT_TYPES or not subject_id:
        raise AuthError("ERR-UNAUTHORIZED", "access token is missing its subject")

    return (subject_type, int(subject_id))


ACCESS_TOKEN_TTL = timedelta(minutes=30)
REFRESH_TOKEN_TTL = timedelta(days=7)


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


def _encode(subject_type: str, subject_id: int, token_type: str, issued_at: datetime, ttl: timedelta) -> str:
    secret_key, algorithm = get_jwt_config()
    payload = {
        "sub_type": subject_type,
        "sub_id": subject_id,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
        "type": token_type,
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def issue_tokens(subject_type: str, subject_id: int) -> IssuedTokens:
    """
    Access / Refresh 토큰 쌍을 발급합니다.

    Args:
        subject_type: 소문자 역할 (employee, merchant, ...)
        subject_id: 사용자 ID

    Returns:
        두 토큰과 만료 시각을 담은 IssuedTokens
    """
    now = datetime.now(timezone.utc)
    return IssuedTokens(
        access_token=_encode(subject_type, subject_id, "access", now, ACCESS_TOKEN_TTL),
        refresh_token=_encode(subject_type, subject_id, "refresh", now, REFRESH_TOKEN_TTL),
        access_expires_at=now + ACCESS_TOKEN_TTL,
        refresh_expires_at=now + REFRESH_TOKEN_TTL,
    )


def verify_refresh_token(refresh_token: str) -> Tuple[str, int]:
    """
    Refresh Token을 검증합니다.

    Raises:
        AuthError: 만료, 형식 오류 또는 refresh 토큰이 아닌 경우
    """
    secret_key, algorithm = get_jwt_config()
    try:
        payload = jwt.decode(refresh_token, secret_key, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("ERR-UNAUTHORIZED", "refresh token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthError("ERR-UNAUTHORIZED", "refresh token is invalid") from e

    if payload.get("type") != "refresh":
        raise AuthError("ERR-UNAUTHORIZED", "not a refresh token")

    subject_type = payload.get("sub_type")
    subject_id = payload.get("sub_id")
    if subject_type not in SUBJECT_TYPES or not subject_id:
        raise AuthError("ERR-UNAUTHORIZED", "refresh token is missing its subject")

    return (subject_type, int(subject_id))

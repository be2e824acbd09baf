"""
Corbez common library
Shared building blocks for every service.
"""

from libs.common.audit import AuditLogger, AuditQuery, audit_logger, get_audit_logger, get_request_audit
from libs.common.auth import (
    SUBJECT_COMPANY_ADMIN,
    SUBJECT_EMPLOYEE,
    SUBJECT_MERCHANT,
    SUBJECT_PLATFORM_ADMIN,
    AuthError,
    IssuedTokens,
    get_jwt_config,
    issue_tokens,
    subject_for_role,
    verify_access_token,
    verify_refresh_token,
)
from libs.common.cache import Cache, CacheKeys, get_cache
from libs.common.errors import ServiceError, forbidden, to_http_exception
from libs.common.fastapi_auth import CurrentUser, get_current_user, require_roles, security
from libs.common.mailer import EmailResult, Mailer
from libs.common.ratelimit import RateLimit
from libs.common.timezone import UTC, ensure_utc, month_key, now_utc

__all__ = [
    "AuditLogger",
    "AuditQuery",
    "audit_logger",
    "get_audit_logger",
    "get_request_audit",
    "AuthError",
    "verify_access_token",
    "verify_refresh_token",
    "issue_tokens",
    "IssuedTokens",
    "get_jwt_config",
    "subject_for_role",
    "SUBJECT_EMPLOYEE",
    "SUBJECT_MERCHANT",
    "SUBJECT_COMPANY_ADMIN",
    "SUBJECT_PLATFORM_ADMIN",
    "Cache",
    "CacheKeys",
    "get_cache",
    "ServiceError",
    "forbidden",
    "to_http_exception",
    "get_current_user",
    "CurrentUser",
    "require_roles",
    "security",
    "EmailResult",
    "Mailer",
    "RateLimit",
    "UTC",
    "now_utc",
    "ensure_utc",
    "month_key",
]

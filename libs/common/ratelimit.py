"""
Fixed-window rate limiting on top of the shared cache.
"""
import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Dict

from fastapi import Depends, HTTPException, Request, Response, status

from libs.common.audit import AuditLogger, client_ip, get_audit_logger
from libs.common.cache import Cache, CacheKeys, get_cache
from libs.schemas.audit_log import AuditAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int
    message: str = "Too many requests, please try again later"


RATE_LIMIT_CONFIGS: Dict[str, RateLimitConfig] = {
    "default": RateLimitConfig(100, 60, "Too many requests, please try again later"),
    "auth": RateLimitConfig(5, 15 * 60, "Too many authentication attempts, please try again later"),
    "strict": RateLimitConfig(10, 60 * 60, "Rate limit exceeded for this operation"),
    "relaxed": RateLimitConfig(300, 60, "Too many requests, please slow down"),
    "upload": RateLimitConfig(10, 60, "Too many upload requests"),
    "couponClaim": RateLimitConfig(5, 60, "Too many coupon claims, please wait a moment"),
    "passwordReset": RateLimitConfig(3, 60 * 60, "Too many password reset requests, please try again later"),
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


def client_identifier(request: Request) -> str:
    """user:{hash} for authenticated callers, ip:{address} otherwise."""
    authorization = request.headers.get("authorization")
    if authorization:
        digest = hashlib.sha256(authorization.encode("utf-8")).hexdigest()[:16]
        return f"user:{digest}"
    return f"ip:{client_ip(request)}"


async def check(request: Request, config: RateLimitConfig, cache: Cache | None = None) -> RateLimitResult:
    cache = cache or get_cache()
    key = CacheKeys.rate_limit(client_identifier(request), request.url.path)
    count = await cache.incr(key, config.window_seconds)
    reset_at = math.ceil(time.time()) + config.window_seconds
    return RateLimitResult(
        allowed=count <= config.max_requests,
        limit=config.max_requests,
        remaining=max(0, config.max_requests - count),
        reset_at=reset_at,
        retry_after=config.window_seconds,
    )


class RateLimit:
    """
    Route dependency enforcing a named rate limit.

    Usage:
        @router.post("/login", dependencies=[Depends(RateLimit("auth"))])
    """

    def __init__(self, name: str = "default", cache: Cache | None = None):
        if name not in RATE_LIMIT_CONFIGS:
            raise KeyError(f"unknown rate limit config: {name}")
        self.name = name
        self.config = RATE_LIMIT_CONFIGS[name]
        self._cache = cache

    async def __call__(
        self,
        request: Request,
        response: Response,
        audit: AuditLogger = Depends(get_audit_logger),
    ) -> RateLimitResult:
        result = await check(request, self.config, self._cache)

        if not result.allowed:
            route = request.url.path
            ip = client_ip(request)
            logger.warning("[RateLimit] %s blocked on %s (%s)", ip, route, self.name)
            await audit.with_request(request).warn(
                AuditAction.RATE_LIMITED,
                f"Rate limit exceeded for {route}",
                metadata={"ip": ip, "route": route, "config": self.name},
            )
            headers = result.headers()
            headers["X-RateLimit-Remaining"] = "0"
            headers["Retry-After"] = str(result.retry_after)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "code": "ERR-RATE-LIMITED",
                    "error": self.config.message,
                    "retryAfter": result.retry_after,
                },
                headers=headers,
            )

        response.headers.update(result.headers())
        return result

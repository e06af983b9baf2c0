"""Fixed-window request limiting on Redis counters."""
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import redis
from starlette.requests import Request

from echo88.services import tokens
from echo88.services.session import AUTH_COOKIE


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    limit: int
    window_seconds: int


RATE_LIMITS: Dict[str, RateLimit] = {
    "public": RateLimit(10, 10),
    "auth": RateLimit(5, 60),
    "upload": RateLimit(10, 60),
    "profile": RateLimit(60, 60),
    "default": RateLimit(120, 60),
}

AUTH_PATHS = (
    "/auth/login",
    "/auth/signup",
    "/auth/forgot-password",
    "/auth/reset-password",
    "/auth/resend-verification",
)
PROFILE_PATHS = ("/auth/me", "/auth/sessions")
ADDRESS_ONLY_TYPES = frozenset({"auth", "public"})


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int  # unix seconds
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after or 60)
        return headers


def rate_limit_type_for_path(path: str) -> str:
    if any(path.startswith(p) for p in AUTH_PATHS):
        return "auth"
    if path.startswith("/auth/avatar"):
        return "upload"
    if any(path.startswith(p) for p in PROFILE_PATHS):
        return "profile"
    return "default"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def client_identifier(request: Request, limit_type: str = "default") -> str:
    """User id from a verified auth cookie, else the client address.

    ``auth`` and ``public`` buckets are always keyed by address.
    """
    token = request.cookies.get(AUTH_COOKIE)
    if token and limit_type not in ADDRESS_ONLY_TYPES:
        payload = tokens.verify(token)
        if payload is not None:
            return f"user:{payload.user_id}"
    return f"ip:{client_ip(request)}"


class RateLimiter:
    def __init__(self, redis_client: redis.Redis, enabled: bool = True, prefix: str = "echo88:ratelimit"):
        self.redis = redis_client
        self.enabled = enabled
        self.prefix = prefix

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request against ``key``.

        Fails open when Redis is unreachable.
        """
        now = int(time.time())
        if not self.enabled:
            return RateLimitResult(True, limit, limit, now + window_seconds)

        full_key = f"{self.prefix}:{key}"
        try:
            current = self.redis.incr(full_key)
            if current == 1:
                self.redis.expire(full_key, window_seconds)
            ttl = self.redis.ttl(full_key)
            if ttl is None or ttl < 0:
                self.redis.expire(full_key, window_seconds)
                ttl = window_seconds
        except redis.RedisError as exc:
            logger.warning("[ratelimit] redis unavailable, allowing request: %s", exc)
            return RateLimitResult(True, limit, limit, now + window_seconds)

        reset = now + int(ttl)
        if current > limit:
            return RateLimitResult(False, limit, 0, reset, retry_after=max(int(ttl), 1))
        return RateLimitResult(True, limit, limit - current, reset)

    def check(self, request: Request, limit_type: Optional[str] = None) -> RateLimitResult:
        limit_type = limit_type or rate_limit_type_for_path(request.url.path)
        config = RATE_LIMITS.get(limit_type, RATE_LIMITS["default"])
        identifier = client_identifier(request, limit_type)
        result = self.hit(f"{limit_type}:{identifier}", config.limit, config.window_seconds)
        if not result.allowed:
            logger.warning(
                "[ratelimit] blocked %s path=%s type=%s", identifier, request.url.path, limit_type
            )
        return result

    def acquire_cooldown(self, key: str, seconds: int) -> bool:
        """True when no cooldown for ``key`` is running; starts one.

        Applies even with limiting disabled. Fails open like :meth:`hit`.
        """
        try:
            return bool(self.redis.set(f"{self.prefix}:cooldown:{key}", "1", nx=True, ex=seconds))
        except redis.RedisError as exc:
            logger.warning("[ratelimit] cooldown check failed for %s: %s", key, exc)
            return True

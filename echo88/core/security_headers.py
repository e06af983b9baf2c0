"""Security and CORS response headers."""
from typing import Dict, Optional

from starlette.responses import Response

from echo88.core.config import Settings, get_settings


CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
        "font-src 'self' https://fonts.gstatic.com data:",
        "img-src 'self' data: https: blob:",
        "media-src 'self' data: https: blob:",
        "connect-src 'self'",
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
        "upgrade-insecure-requests",
    ]
)

PERMISSIONS_POLICY = ", ".join(
    ["camera=()", "microphone=()", "geolocation=()", "interest-cohort=()"]
)

HSTS = "max-age=31536000; includeSubDomains; preload"

ALLOW_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
ALLOW_HEADERS = ", ".join(
    ["Content-Type", "Authorization", "X-Requested-With", "X-User-ID", "Accept", "Origin"]
)
EXPOSE_HEADERS = ", ".join(
    ["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"]
)
PREFLIGHT_MAX_AGE = "86400"


def security_headers(settings: Optional[Settings] = None) -> Dict[str, str]:
    settings = settings or get_settings()
    headers = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": PERMISSIONS_POLICY,
        "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    }
    if settings.is_production:
        headers["Strict-Transport-Security"] = HSTS
    return headers


def is_origin_allowed(origin: Optional[str], settings: Optional[Settings] = None) -> bool:
    if not origin:
        return False
    settings = settings or get_settings()
    if not settings.is_production and (
        origin.startswith("http://localhost") or origin.startswith("http://127.0.0.1")
    ):
        return True
    return origin.rstrip("/") in settings.allowed_origins


def resolve_allowed_origin(origin: Optional[str], settings: Optional[Settings] = None) -> str:
    """Origin to put in ``Access-Control-Allow-Origin``.

    Allow-listed origins are echoed. Anything else falls back to the app URL
    in production and is echoed (or ``*``) in development.
    """
    settings = settings or get_settings()
    if is_origin_allowed(origin, settings):
        return origin
    if settings.is_production:
        return settings.APP_URL
    return origin or "*"


def cors_headers(origin: Optional[str], settings: Optional[Settings] = None) -> Dict[str, str]:
    settings = settings or get_settings()
    return {
        "Access-Control-Allow-Origin": resolve_allowed_origin(origin, settings),
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Expose-Headers": EXPOSE_HEADERS,
        "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
        "Vary": "Origin",
    }


def apply_security_headers(
    response: Response,
    origin: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Response:
    settings = settings or get_settings()
    for name, value in security_headers(settings).items():
        response.headers[name] = value
    for name, value in cors_headers(origin, settings).items():
        response.headers[name] = value
    return response


def preflight_response(origin: Optional[str] = None, settings: Optional[Settings] = None) -> Response:
    return apply_security_headers(Response(status_code=204), origin, settings)

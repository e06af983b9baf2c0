"""Route-level security wrapper.

Every request that goes through :func:`with_security` is handled in this
order: CORS preflight short-circuit, rate limiting, the endpoint itself,
then security and CORS headers stamped on whatever response came out,
errors included.

FastAPI routers opt in with ``route_class=SecureRoute`` or
``route_class=ValidatedSecureRoute``.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List

from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from echo88.core.errors import ApiError
from echo88.core.security_headers import apply_security_headers, preflight_response


logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


def _clean_message(message: str) -> str:
    # pydantic prefixes messages raised from validators
    for prefix in ("Value error, ", "Assertion failed, "):
        if message.startswith(prefix):
            return message[len(prefix):]
    return message


def validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        location = loc[0] if loc else "body"
        field = ".".join(loc[1:]) or location
        details.append(
            {
                "field": field,
                "location": location,
                "message": _clean_message(str(error.get("msg", "Invalid value"))),
            }
        )
    return details


def with_validation(handler: Handler) -> Handler:
    """Turn request validation failures into a 400 with field details."""

    async def validated(request: Request) -> Response:
        try:
            return await handler(request)
        except RequestValidationError as exc:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Validation failed",
                    "details": validation_details(exc),
                },
            )

    return validated


def _error_response(exc: Exception, request: Request) -> Response:
    if isinstance(exc, ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())
    if isinstance(exc, RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Invalid request",
                "details": validation_details(exc),
            },
        )
    if isinstance(exc, HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": detail},
            headers=getattr(exc, "headers", None),
        )
    logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


def with_security(handler: Handler) -> Handler:
    async def secured(request: Request) -> Response:
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            return preflight_response(origin)

        limit = None
        limiter = getattr(request.app.state, "rate_limiter", None)
        if limiter is not None:
            limit = await run_in_threadpool(limiter.check, request)
            if not limit.allowed:
                response = JSONResponse(
                    status_code=429,
                    content={
                        "success": False,
                        "error": "Too Many Requests",
                        "retryAfter": limit.retry_after,
                    },
                    headers=limit.headers(),
                )
                return apply_security_headers(response, origin)

        try:
            response = await handler(request)
        except Exception as exc:
            response = _error_response(exc, request)

        if limit is not None:
            for name, value in limit.headers().items():
                response.headers[name] = value
        return apply_security_headers(response, origin)

    return secured


def with_security_and_validation(handler: Handler) -> Handler:
    return with_security(with_validation(handler))


class SecureRoute(APIRoute):
    def get_route_handler(self) -> Callable:
        return with_security(super().get_route_handler())


class ValidatedSecureRoute(APIRoute):
    def get_route_handler(self) -> Callable:
        return with_security_and_validation(super().get_route_handler())

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request

from echo88.api import auth, avatar
from echo88.core.config import Settings, get_settings
from echo88.core.database import init_db
from echo88.core.request_wrapper import SecureRoute
from echo88.core.security_headers import apply_security_headers, preflight_response
from echo88.services.rate_limit import RateLimiter
from echo88.services.redis_client import get_redis


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


health_router = APIRouter(tags=["health"], route_class=SecureRoute)


@health_router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def create_app(settings: Optional[Settings] = None, rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.rate_limiter = rate_limiter or RateLimiter(get_redis(), enabled=settings.RATE_LIMIT_ENABLED)

    @app.middleware("http")
    async def security_middleware(request: Request, call_next):
        # preflights for paths whose routes do not accept OPTIONS
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            return preflight_response(origin, settings)
        response = await call_next(request)
        if "x-frame-options" not in response.headers:
            apply_security_headers(response, origin, settings)
        return response

    app.include_router(auth.router)
    app.include_router(avatar.router)
    app.include_router(health_router)
    return app


app = create_app()

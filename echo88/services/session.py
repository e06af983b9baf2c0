"""Cookie-backed session facade.

Turns the ``auth-token`` cookie into a verified :class:`SessionData` and
manages the cookie lifecycle on responses.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from starlette.requests import Request
from starlette.responses import Response

from echo88.core.config import Settings, get_settings
from echo88.services import tokens
from echo88.services.security import new_session_id


AUTH_COOKIE = "auth-token"
REFRESH_COOKIE = "refresh-token"
REFRESH_COOKIE_PATH = "/auth"


@dataclass(frozen=True)
class SessionData:
    user_id: str
    email: str
    username: str
    session_id: str
    device_id: Optional[str] = None


def _payload(user_id: str, email: str, username: str, session_id: str, device_id: Optional[str]) -> tokens.TokenPayload:
    return tokens.TokenPayload(
        user_id=user_id,
        email=email,
        username=username,
        session_id=session_id,
        device_id=device_id,
    )


def create_session(
    user_id: str,
    email: str,
    username: str,
    device_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Tuple[str, str]:
    """Return ``(token, session_id)`` for a brand new session."""
    session_id = new_session_id()
    token = tokens.sign(
        _payload(user_id, email, username, session_id, device_id),
        tokens.access_ttl(settings),
        tokens.ACCESS,
        settings=settings,
    )
    return token, session_id


def create_refresh_token(session: SessionData, settings: Optional[Settings] = None) -> str:
    return tokens.sign(
        _payload(session.user_id, session.email, session.username, session.session_id, session.device_id),
        tokens.refresh_ttl(settings),
        tokens.REFRESH,
        settings=settings,
    )


def reissue_access_token(session: SessionData, settings: Optional[Settings] = None) -> str:
    return tokens.sign(
        _payload(session.user_id, session.email, session.username, session.session_id, session.device_id),
        tokens.access_ttl(settings),
        tokens.ACCESS,
        settings=settings,
    )


def _to_session(payload: Optional[tokens.TokenPayload]) -> Optional[SessionData]:
    if payload is None:
        return None
    return SessionData(
        user_id=payload.user_id,
        email=payload.email,
        username=payload.username,
        session_id=payload.session_id,
        device_id=payload.device_id,
    )


def get_session(request: Request, settings: Optional[Settings] = None) -> Optional[SessionData]:
    token = request.cookies.get(AUTH_COOKIE)
    if not token:
        return None
    return _to_session(tokens.verify(token, tokens.ACCESS, settings=settings))


def get_refresh_session(request: Request, settings: Optional[Settings] = None) -> Optional[SessionData]:
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        return None
    return _to_session(tokens.verify(token, tokens.REFRESH, settings=settings))


def set_auth_cookie(response: Response, token: str, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    response.set_cookie(
        AUTH_COOKIE,
        token,
        max_age=int(tokens.access_ttl(settings).total_seconds()),
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )


def set_refresh_cookie(response: Response, token: str, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=int(tokens.refresh_ttl(settings).total_seconds()),
        path=REFRESH_COOKIE_PATH,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )


def delete_session(response: Response, settings: Optional[Settings] = None) -> None:
    """Expire both cookies. Safe to call when they were never set."""
    settings = settings or get_settings()
    response.delete_cookie(AUTH_COOKIE, path="/", secure=settings.is_production, httponly=True, samesite="lax")
    response.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )

"""Signing and verification of the session bearer token.

Tokens are HS256 JWTs carrying the session identity (``userId``, ``email``,
``username``, ``sessionId`` and an optional ``deviceId``) plus the standard
``iss``, ``aud``, ``iat`` and ``exp`` claims. Verification failures of any
kind collapse into ``None``; callers never learn why a token was rejected.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from echo88.core.config import Settings, get_settings


ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    email: str
    username: str
    session_id: str
    device_id: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


def access_ttl(settings: Optional[Settings] = None) -> timedelta:
    settings = settings or get_settings()
    return timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)


def refresh_ttl(settings: Optional[Settings] = None) -> timedelta:
    settings = settings or get_settings()
    return timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)


def sign(
    payload: TokenPayload,
    ttl: timedelta,
    token_type: str = ACCESS,
    settings: Optional[Settings] = None,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "userId": payload.user_id,
        "email": payload.email,
        "username": payload.username,
        "sessionId": payload.session_id,
        "typ": token_type,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    if payload.device_id:
        claims["deviceId"] = payload.device_id
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify(
    token: str,
    token_type: str = ACCESS,
    settings: Optional[Settings] = None,
) -> Optional[TokenPayload]:
    settings = settings or get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except (JWTError, ValueError, TypeError, AttributeError):
        return None

    if claims.get("typ") != token_type:
        return None
    try:
        return TokenPayload(
            user_id=str(claims["userId"]),
            email=str(claims["email"]),
            username=str(claims["username"]),
            session_id=str(claims["sessionId"]),
            device_id=claims.get("deviceId"),
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError, OverflowError):
        return None

import secrets
import hashlib
from datetime import datetime, timedelta
from typing import Tuple

from echo88.models.user import utcnow


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token_with_expiry(ttl: timedelta) -> Tuple[str, str, datetime]:
    token = generate_token()
    token_hash = hash_token(token)
    expires_at = utcnow() + ttl
    return token, token_hash, expires_at


def new_session_id() -> str:
    # 128 bits, hex
    return secrets.token_hex(16)


def new_device_id() -> str:
    return secrets.token_hex(16)

"""User accessor, credential verification and out-of-band token flows.

Every function takes the SQLAlchemy session it works with; nothing here
opens its own connection.
"""
import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from echo88.core.config import get_settings
from echo88.models.login_session import LoginSession
from echo88.models.user import User, utcnow
from echo88.services.passwords import burn_password_check, hash_password, verify_password
from echo88.services.security import generate_token_with_expiry, hash_token


logger = logging.getLogger(__name__)


class DuplicateUserError(Exception):
    def __init__(self, field: str):
        super().__init__(f"{field} already registered")
        self.field = field


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username.strip().lower()).first()


def create_user(
    db: Session,
    email: str,
    username: str,
    full_name: str,
    password: str,
    avatar_url: Optional[str] = None,
) -> Tuple[User, str]:
    """Insert an unverified user and return it with its raw verification token."""
    settings = get_settings()
    token, token_hash, expires_at = generate_token_with_expiry(
        timedelta(hours=settings.EMAIL_VERIFICATION_TTL_HOURS)
    )
    user = User(
        email=email.strip().lower(),
        username=username.strip().lower(),
        full_name=full_name.strip(),
        password_hash=hash_password(password),
        email_verified=False,
        email_verification_token_hash=token_hash,
        email_verification_expires_at=expires_at,
        last_verification_sent_at=utcnow(),
        avatar_url=avatar_url,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        message = str(exc.orig).lower()
        raise DuplicateUserError("username" if "username" in message else "email") from exc
    db.refresh(user)
    return user, token


def verify_credentials(db: Session, email_or_username: str, password: str) -> Optional[User]:
    user = get_user_by_email(db, email_or_username) or get_user_by_username(db, email_or_username)
    if user is None:
        burn_password_check(password)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def update_avatar(db: Session, user_id: str, avatar_url: str) -> bool:
    updated = (
        db.query(User)
        .filter(User.id == user_id)
        .update({User.avatar_url: avatar_url, User.updated_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


# --- password reset -------------------------------------------------------

def issue_password_reset_token(db: Session, user: User) -> str:
    """Store a fresh reset token for ``user``; any earlier one stops working."""
    settings = get_settings()
    token, token_hash, expires_at = generate_token_with_expiry(
        timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES)
    )
    db.query(User).filter(User.id == user.id).update(
        {User.reset_token_hash: token_hash, User.reset_token_expires_at: expires_at},
        synchronize_session=False,
    )
    db.commit()
    return token


def find_user_by_reset_token(db: Session, token: str) -> Optional[User]:
    return (
        db.query(User)
        .filter(
            User.reset_token_hash == hash_token(token),
            User.reset_token_expires_at > utcnow(),
        )
        .first()
    )


def redeem_password_reset_token(db: Session, token: str, new_password: str) -> Optional[User]:
    """Consume ``token`` and set the new password in one statement.

    Returns the user, or None when the token is unknown, expired or was
    consumed by someone else first. All login sessions of the user end.
    """
    token_hash = hash_token(token)
    now = utcnow()
    user = find_user_by_reset_token(db, token)
    if user is None:
        return None
    updated = (
        db.query(User)
        .filter(
            User.id == user.id,
            User.reset_token_hash == token_hash,
            User.reset_token_expires_at > now,
        )
        .update(
            {
                User.password_hash: hash_password(new_password),
                User.reset_token_hash: None,
                User.reset_token_expires_at: None,
                User.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        return None
    db.query(LoginSession).filter(
        LoginSession.user_id == user.id,
        LoginSession.is_active.is_(True),
    ).update({LoginSession.is_active: False}, synchronize_session=False)
    db.commit()
    logger.info("[auth] password reset for user=%s", user.id)
    return user


# --- email verification ---------------------------------------------------

def issue_email_verification_token(db: Session, user: User) -> str:
    settings = get_settings()
    token, token_hash, expires_at = generate_token_with_expiry(
        timedelta(hours=settings.EMAIL_VERIFICATION_TTL_HOURS)
    )
    db.query(User).filter(User.id == user.id).update(
        {
            User.email_verification_token_hash: token_hash,
            User.email_verification_expires_at: expires_at,
            User.last_verification_sent_at: utcnow(),
        },
        synchronize_session=False,
    )
    db.commit()
    return token


def redeem_email_verification_token(db: Session, token: str) -> Optional[User]:
    token_hash = hash_token(token)
    now = utcnow()
    user = (
        db.query(User)
        .filter(
            User.email_verification_token_hash == token_hash,
            User.email_verification_expires_at > now,
        )
        .first()
    )
    if user is None:
        return None
    updated = (
        db.query(User)
        .filter(
            User.id == user.id,
            User.email_verification_token_hash == token_hash,
            User.email_verification_expires_at > now,
        )
        .update(
            {
                User.email_verified: True,
                User.email_verification_token_hash: None,
                User.email_verification_expires_at: None,
                User.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        return None
    db.commit()
    db.refresh(user)
    logger.info("[auth] email verified for user=%s", user.id)
    return user

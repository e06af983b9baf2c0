from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from echo88.core.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)  # stored lowercase
    username = Column(String(30), unique=True, index=True, nullable=False)  # stored lowercase
    full_name = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)

    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token_hash = Column(String(128), nullable=True, index=True)
    email_verification_expires_at = Column(DateTime, nullable=True)
    last_verification_sent_at = Column(DateTime, nullable=True)
    reset_token_hash = Column(String(128), nullable=True, index=True)
    reset_token_expires_at = Column(DateTime, nullable=True)

    avatar_url = Column(String(512), nullable=True)
    bio = Column(Text, nullable=True)
    is_private = Column(Boolean, default=False, nullable=False)
    notifications_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    login_sessions = relationship(
        "LoginSession",
        back_populates="user",
        cascade="all, delete-orphan",
    )

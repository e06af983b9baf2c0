from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from echo88.core.database import Base
from echo88.models.user import utcnow


class LoginSession(Base):
    __tablename__ = "login_sessions"

    # same value as the sessionId claim of the auth token
    id = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    device_id = Column(String(64), nullable=False)
    device = Column(String(512), nullable=False, default="Unknown")
    browser = Column(String(512), nullable=False, default="Unknown")
    ip_address = Column(String(64), nullable=False, default="Unknown")
    location = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_active_at = Column(DateTime, default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    user = relationship("User", back_populates="login_sessions")

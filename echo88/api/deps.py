from typing import Annotated, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from echo88.core.database import get_db
from echo88.core.errors import AuthenticationError, NotFoundError
from echo88.models.user import User
from echo88.services.login_sessions import update_session_activity
from echo88.services.rate_limit import RateLimiter
from echo88.services.session import SessionData, get_session
from echo88.services.users import get_user_by_id


def get_optional_session(request: Request) -> Optional[SessionData]:
    return get_session(request)


def require_session(
    session: Annotated[Optional[SessionData], Depends(get_optional_session)],
    db: Annotated[Session, Depends(get_db)],
) -> SessionData:
    """A verified token whose login session is still active.

    Touches the session's ``last_active_at`` on the way through.
    """
    if session is None:
        raise AuthenticationError("Not authenticated")
    if not update_session_activity(db, session.user_id, session.session_id):
        raise AuthenticationError("Session expired or revoked")
    return session


def get_current_user(
    session: Annotated[SessionData, Depends(require_session)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    user = get_user_by_id(db, session.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_rate_limiter(request: Request) -> Optional[RateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


DbSession = Annotated[Session, Depends(get_db)]
OptionalSession = Annotated[Optional[SessionData], Depends(get_optional_session)]
CurrentSession = Annotated[SessionData, Depends(require_session)]
CurrentUser = Annotated[User, Depends(get_current_user)]
Limiter = Annotated[Optional[RateLimiter], Depends(get_rate_limiter)]

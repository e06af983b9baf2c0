from typing import List, Optional

from sqlalchemy.orm import Session

from echo88.models.login_session import LoginSession
from echo88.models.user import utcnow


def add_login_session(
    db: Session,
    user_id: str,
    session_id: str,
    device_id: str,
    device: str,
    browser: str,
    ip_address: str,
    location: Optional[str] = None,
) -> LoginSession:
    now = utcnow()
    login_session = LoginSession(
        id=session_id,
        user_id=user_id,
        device_id=device_id,
        device=device[:512],
        browser=browser[:512],
        ip_address=ip_address[:64],
        location=location,
        created_at=now,
        last_active_at=now,
        is_active=True,
    )
    db.add(login_session)
    db.commit()
    db.refresh(login_session)
    return login_session


def get_login_session(db: Session, user_id: str, session_id: str) -> Optional[LoginSession]:
    return (
        db.query(LoginSession)
        .filter(LoginSession.id == session_id, LoginSession.user_id == user_id)
        .first()
    )


def get_user_sessions(db: Session, user_id: str) -> List[LoginSession]:
    return (
        db.query(LoginSession)
        .filter(LoginSession.user_id == user_id, LoginSession.is_active.is_(True))
        .order_by(LoginSession.last_active_at.desc())
        .all()
    )


def remove_session(db: Session, user_id: str, session_id: str) -> bool:
    updated = (
        db.query(LoginSession)
        .filter(
            LoginSession.id == session_id,
            LoginSession.user_id == user_id,
            LoginSession.is_active.is_(True),
        )
        .update({LoginSession.is_active: False}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def remove_all_sessions_except(db: Session, user_id: str, current_session_id: str) -> int:
    updated = (
        db.query(LoginSession)
        .filter(
            LoginSession.user_id == user_id,
            LoginSession.id != current_session_id,
            LoginSession.is_active.is_(True),
        )
        .update({LoginSession.is_active: False}, synchronize_session=False)
    )
    db.commit()
    return updated


def update_session_activity(db: Session, user_id: str, session_id: str) -> bool:
    """Touch ``last_active_at``; False when the session is gone or revoked."""
    updated = (
        db.query(LoginSession)
        .filter(
            LoginSession.id == session_id,
            LoginSession.user_id == user_id,
            LoginSession.is_active.is_(True),
        )
        .update({LoginSession.last_active_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated == 1

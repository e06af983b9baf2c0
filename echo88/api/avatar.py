import logging
from datetime import timedelta

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter

from echo88.api.deps import CurrentSession, DbSession, OptionalSession
from echo88.core.config import get_settings
from echo88.core.errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
)
from echo88.core.request_wrapper import ValidatedSecureRoute
from echo88.models.user import User, utcnow
from echo88.schemas.auth import AvatarUploadRequest, SignupAvatarRequest, UpdateAvatarRequest
from echo88.schemas.responses import ErrorResponse, MessageResponse, UploadUrlResponse
from echo88.services.login_sessions import update_session_activity
from echo88.services.s3 import (
    UPLOAD_URL_TTL_SECONDS,
    StorageNotConfiguredError,
    avatar_key,
    create_presigned_upload,
    get_file_url,
    is_configured,
)
from echo88.services.users import get_user_by_id, update_avatar


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["avatar"], route_class=ValidatedSecureRoute)

ERRORS = {code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 429, 503)}


def _in_signup_window(user: User) -> bool:
    window = timedelta(minutes=get_settings().SIGNUP_AVATAR_WINDOW_MINUTES)
    return user.created_at >= utcnow() - window


def _signup_user(db, user_id: str) -> User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.email_verified or not _in_signup_window(user):
        raise ForbiddenError("Avatar update window has expired")
    return user


@router.post("/avatar/upload-url", response_model=UploadUrlResponse, responses=ERRORS)
def create_avatar_upload_url(
    payload: AvatarUploadRequest,
    session: OptionalSession,
    db: DbSession,
) -> UploadUrlResponse:
    """Presigned S3 PUT URL for a new avatar.

    Logged-in users upload for themselves. During signup there is no session
    yet, so ``userId`` of a fresh, unverified account is accepted instead.
    The client must PUT with the returned ``contentType``.
    """
    if session is not None:
        if not update_session_activity(db, session.user_id, session.session_id):
            raise AuthenticationError("Session expired or revoked")
        user_id = session.user_id
    elif payload.user_id:
        user_id = _signup_user(db, payload.user_id).id
    else:
        raise AuthenticationError("Not authenticated")

    if not is_configured():
        raise ServiceUnavailableError("Avatar storage is not configured")

    key = avatar_key(user_id, payload.filename)
    try:
        upload_url = create_presigned_upload(key, payload.content_type)
    except StorageNotConfiguredError as exc:
        raise ServiceUnavailableError("Avatar storage is not configured") from exc
    except (ClientError, BotoCoreError) as exc:
        logger.error("[s3] presigned url for %s failed: %s", key, exc)
        raise ServiceUnavailableError("Could not create upload URL") from exc

    return UploadUrlResponse(
        upload_url=upload_url,
        file_url=get_file_url(key),
        key=key,
        content_type=payload.content_type,
        expires_in=UPLOAD_URL_TTL_SECONDS,
    )


@router.post("/update-avatar", response_model=MessageResponse, responses=ERRORS)
def set_avatar(payload: UpdateAvatarRequest, session: CurrentSession, db: DbSession) -> MessageResponse:
    if not update_avatar(db, session.user_id, payload.avatar_url):
        raise NotFoundError("User not found")
    return MessageResponse(message="Avatar updated")


@router.post("/update-avatar-signup", response_model=MessageResponse, responses=ERRORS)
def set_signup_avatar(payload: SignupAvatarRequest, db: DbSession) -> MessageResponse:
    user = _signup_user(db, payload.user_id)
    update_avatar(db, user.id, payload.avatar_url)
    return MessageResponse(message="Avatar updated")

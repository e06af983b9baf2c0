import logging
from typing import Annotated, Callable

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from echo88.api.deps import CurrentSession, CurrentUser, DbSession, Limiter, OptionalSession
from echo88.core.config import get_settings
from echo88.core.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from echo88.core.request_wrapper import ValidatedSecureRoute
from echo88.schemas.auth import (
    AvailabilityRequest,
    EmailRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    VerifyEmailRequest,
    normalize_account_email,
)
from echo88.schemas.responses import (
    AvailabilityResponse,
    ErrorResponse,
    FieldAvailability,
    LoginResponse,
    LogoutAllResponse,
    MeResponse,
    MessageResponse,
    ProfileOut,
    SessionOut,
    SessionsResponse,
    SignupResponse,
    UserEmailResponse,
    UserOut,
)
from echo88.services.accounts import username_error
from echo88.services.email import (
    SANDBOX_GUIDANCE,
    EmailDeliveryError,
    EmailSandboxError,
    send_reset_email,
    send_verification_email,
)
from echo88.services.login_sessions import (
    add_login_session,
    get_user_sessions,
    remove_all_sessions_except,
    remove_session,
    update_session_activity,
)
from echo88.services.passwords import validate_password_strength
from echo88.services.rate_limit import client_ip
from echo88.services.security import new_device_id
from echo88.services.session import (
    SessionData,
    create_refresh_token,
    create_session,
    delete_session,
    get_refresh_session,
    reissue_access_token,
    set_auth_cookie,
    set_refresh_cookie,
)
from echo88.services.users import (
    DuplicateUserError,
    create_user,
    find_user_by_reset_token,
    get_user_by_email,
    get_user_by_id,
    get_user_by_username,
    issue_email_verification_token,
    issue_password_reset_token,
    redeem_email_verification_token,
    redeem_password_reset_token,
    verify_credentials,
)
from echo88.workers.celery_app import dispatch_background
from echo88.workers.tasks import send_login_notification_task


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"], route_class=ValidatedSecureRoute)

ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
}

FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a password reset link has been sent"
RESEND_VERIFICATION_MESSAGE = "If this email belongs to an unverified account, a new verification link has been sent"
INVALID_TOKEN = "Invalid or expired token"


def _send_quietly(send: Callable[[str, str], None], email: str, token: str) -> bool:
    try:
        send(email, token)
    except EmailDeliveryError as exc:
        logger.warning("[auth] %s to %s failed: %s", send.__name__, email, exc)
        return False
    return True


def _cooldown_passed(limiter, key: str) -> bool:
    if limiter is None:
        return True
    passed = limiter.acquire_cooldown(key, get_settings().EMAIL_RESEND_COOLDOWN_SECONDS)
    if not passed:
        logger.info("[auth] %s suppressed by cooldown", key)
    return passed


# --- sessions -------------------------------------------------------------

@router.post("/login", response_model=LoginResponse, responses=ERRORS)
def login(payload: LoginRequest, request: Request, response: Response, db: DbSession) -> LoginResponse:
    user = verify_credentials(db, payload.email_or_username, payload.password)
    if user is None:
        raise AuthenticationError("Invalid credentials")

    if not user.email_verified:
        # no session, no cookie
        raise ForbiddenError("Email not verified", requires_verification=True, user_id=user.id)

    settings = get_settings()
    device_id = new_device_id()
    user_agent = request.headers.get("user-agent") or "Unknown"
    ip = client_ip(request)

    token, session_id = create_session(user.id, user.email, user.username, device_id)
    add_login_session(
        db,
        user_id=user.id,
        session_id=session_id,
        device_id=device_id,
        device=user_agent,
        browser=user_agent,
        ip_address=ip,
    )

    session = SessionData(user.id, user.email, user.username, session_id, device_id)
    set_auth_cookie(response, token)
    set_refresh_cookie(response, create_refresh_token(session))
    logger.info("[auth] login user=%s session=%s ip=%s", user.id, session_id, ip)

    if settings.LOGIN_NOTIFICATIONS_ENABLED:
        dispatch_background(
            send_login_notification_task,
            email=user.email,
            device=user_agent,
            browser=user_agent,
            ip=ip,
        )

    return LoginResponse(user=UserOut.model_validate(user), session_id=session_id)


@router.post("/logout", response_model=MessageResponse)
def logout(session: OptionalSession, response: Response, db: DbSession) -> MessageResponse:
    if session is not None:
        remove_session(db, session.user_id, session.session_id)
        logger.info("[auth] logout user=%s session=%s", session.user_id, session.session_id)
    delete_session(response)
    return MessageResponse(message="Logged out")


@router.post("/logout-all", response_model=LogoutAllResponse, responses=ERRORS)
def logout_all(session: CurrentSession, db: DbSession) -> LogoutAllResponse:
    revoked = remove_all_sessions_except(db, session.user_id, session.session_id)
    logger.info("[auth] logout-all user=%s revoked=%s", session.user_id, revoked)
    return LogoutAllResponse(message="Logged out of all other devices", revoked=revoked)


@router.post("/refresh", response_model=MessageResponse, responses=ERRORS)
def refresh(request: Request, response: Response, db: DbSession) -> MessageResponse:
    session = get_refresh_session(request)
    if session is None:
        raise AuthenticationError("Invalid refresh token")
    if not update_session_activity(db, session.user_id, session.session_id):
        raise AuthenticationError("Session expired or revoked")
    user = get_user_by_id(db, session.user_id)
    if user is None:
        raise AuthenticationError("Invalid refresh token")

    # email or username may have changed since the refresh token was issued
    current = SessionData(user.id, user.email, user.username, session.session_id, session.device_id)
    set_auth_cookie(response, reissue_access_token(current))
    return MessageResponse(message="Session refreshed")


@router.get("/me", response_model=MeResponse, responses=ERRORS)
def me(user: CurrentUser) -> MeResponse:
    return MeResponse(user=ProfileOut.model_validate(user))


@router.get("/sessions", response_model=SessionsResponse, responses=ERRORS)
def list_sessions(session: CurrentSession, db: DbSession) -> SessionsResponse:
    sessions = [
        SessionOut(
            id=row.id,
            device_id=row.device_id,
            device=row.device,
            browser=row.browser,
            location=row.location,
            ip=row.ip_address,
            created_at=row.created_at,
            last_active_at=row.last_active_at,
            is_current=row.id == session.session_id,
        )
        for row in get_user_sessions(db, session.user_id)
    ]
    return SessionsResponse(sessions=sessions, total=len(sessions))


@router.delete("/sessions/{session_id}", response_model=MessageResponse, responses=ERRORS)
def revoke_session(session_id: str, session: CurrentSession, db: DbSession) -> MessageResponse:
    if session_id == session.session_id:
        raise BadRequestError("Use logout to end the current session")
    if not remove_session(db, session.user_id, session_id):
        raise NotFoundError("Session not found")
    return MessageResponse(message="Session removed")


# --- registration ---------------------------------------------------------

@router.post("/signup", response_model=SignupResponse, responses={**ERRORS, 409: {"model": ErrorResponse}})
def signup(payload: SignupRequest, db: DbSession, limiter: Limiter) -> SignupResponse:
    errors = validate_password_strength(payload.password)
    if errors:
        raise BadRequestError("Weak password", errors=errors)

    if get_user_by_email(db, payload.email):
        raise ConflictError("Email already registered")
    if get_user_by_username(db, payload.username):
        raise ConflictError("Username already taken")

    try:
        user, token = create_user(
            db,
            email=payload.email,
            username=payload.username,
            full_name=payload.full_name,
            password=payload.password,
            avatar_url=payload.avatar,
        )
    except DuplicateUserError as exc:
        raise ConflictError(
            "Username already taken" if exc.field == "username" else "Email already registered"
        ) from exc

    email_sent = _send_quietly(send_verification_email, user.email, token)
    if email_sent:
        # resend-verification shares this cooldown
        _cooldown_passed(limiter, f"verify:{user.email}")
    logger.info("[auth] signup user=%s email_sent=%s", user.id, email_sent)
    return SignupResponse(
        message="Account created. Check your email to verify your account",
        user=UserOut.model_validate(user),
        email_sent=email_sent,
    )


@router.post("/check-availability", response_model=AvailabilityResponse, response_model_exclude_none=True)
def check_availability(payload: AvailabilityRequest, db: DbSession) -> AvailabilityResponse:
    result = AvailabilityResponse()

    if payload.email:
        email = normalize_account_email(payload.email)
        if email is None:
            result.email = FieldAvailability(available=False, message="Invalid email format")
        else:
            taken = get_user_by_email(db, email) is not None
            result.email = FieldAvailability(
                available=not taken,
                message="Email already registered" if taken else "Email available",
            )

    if payload.username:
        username = payload.username.strip()
        error = username_error(username)
        if error:
            result.username = FieldAvailability(available=False, message=error)
        else:
            taken = get_user_by_username(db, username) is not None
            result.username = FieldAvailability(
                available=not taken,
                message="Username already taken" if taken else "Username available",
            )

    return result


@router.get("/user-email", response_model=UserEmailResponse, responses=ERRORS)
def user_email(
    user_id: Annotated[str, Query(alias="userId", min_length=1, max_length=36)],
    db: DbSession,
) -> UserEmailResponse:
    """Email of an account still waiting for verification.

    Verified accounts are reported as missing so the endpoint cannot be used
    to look up addresses of active users.
    """
    user = get_user_by_id(db, user_id)
    if user is None or user.email_verified:
        raise NotFoundError("User not found")
    return UserEmailResponse(email=user.email, email_verified=user.email_verified)


# --- password reset -------------------------------------------------------

@router.post("/forgot-password", response_model=MessageResponse, responses=ERRORS)
def forgot_password(payload: EmailRequest, db: DbSession, limiter: Limiter) -> MessageResponse:
    user = get_user_by_email(db, payload.email)
    if user is not None and _cooldown_passed(limiter, f"reset:{user.email}"):
        token = issue_password_reset_token(db, user)
        _send_quietly(send_reset_email, user.email, token)
    # same answer whether or not the account exists
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse, responses=ERRORS)
def reset_password(payload: ResetPasswordRequest, db: DbSession) -> MessageResponse:
    if find_user_by_reset_token(db, payload.token) is None:
        raise BadRequestError(INVALID_TOKEN)

    errors = validate_password_strength(payload.new_password)
    if errors:
        raise BadRequestError("Weak password", errors=errors)

    if redeem_password_reset_token(db, payload.token, payload.new_password) is None:
        raise BadRequestError(INVALID_TOKEN)
    return MessageResponse(message="Password updated. Please log in again")


# --- email verification ---------------------------------------------------

@router.post("/verify-email", response_model=MessageResponse, responses=ERRORS)
def verify_email(payload: VerifyEmailRequest, db: DbSession) -> MessageResponse:
    if redeem_email_verification_token(db, payload.token) is None:
        raise BadRequestError(INVALID_TOKEN)
    return MessageResponse(message="Email verified. You can now log in")


@router.get("/verify-email", response_class=RedirectResponse, status_code=307)
def verify_email_link(
    token: Annotated[str, Query(min_length=1, max_length=256)],
    db: DbSession,
) -> RedirectResponse:
    target = f"{get_settings().APP_URL}/verify-email"
    try:
        user = redeem_email_verification_token(db, token)
    except SQLAlchemyError:
        logger.exception("[auth] verification link failed")
        db.rollback()
        return RedirectResponse(f"{target}?error=server_error", status_code=307)
    if user is None:
        return RedirectResponse(f"{target}?error=invalid_token", status_code=307)
    return RedirectResponse(f"{target}?success=true", status_code=307)


@router.post("/resend-verification", response_model=MessageResponse, responses=ERRORS)
def resend_verification(payload: EmailRequest, db: DbSession, limiter: Limiter) -> MessageResponse:
    user = get_user_by_email(db, payload.email)
    if user is None or user.email_verified:
        return MessageResponse(message=RESEND_VERIFICATION_MESSAGE)
    if not _cooldown_passed(limiter, f"verify:{user.email}"):
        return MessageResponse(message=RESEND_VERIFICATION_MESSAGE)

    token = issue_email_verification_token(db, user)
    try:
        send_verification_email(user.email, token)
    except EmailSandboxError as exc:
        logger.warning("[auth] verification email to %s blocked by provider test mode: %s", user.email, exc)
        if not get_settings().is_production:
            raise ForbiddenError("Email provider is in test mode", guidance=SANDBOX_GUIDANCE) from exc
    except EmailDeliveryError as exc:
        logger.warning("[auth] verification email to %s failed: %s", user.email, exc)
    return MessageResponse(message=RESEND_VERIFICATION_MESSAGE)

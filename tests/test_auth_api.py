from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import STRONG_PASSWORD, login
from echo88.api import auth as auth_api
from echo88.models.user import User, utcnow
from echo88.services.email import EmailDeliveryError, EmailSandboxError
from echo88.services.session import AUTH_COOKIE, REFRESH_COOKIE


class Outbox:
    def __init__(self):
        self.sent = []

    def __call__(self, email, token):
        self.sent.append((email, token))

    @property
    def last_token(self):
        return self.sent[-1][1]


@pytest.fixture
def verification_outbox(monkeypatch):
    outbox = Outbox()
    monkeypatch.setattr(auth_api, "send_verification_email", outbox)
    return outbox


@pytest.fixture
def reset_outbox(monkeypatch):
    outbox = Outbox()
    monkeypatch.setattr(auth_api, "send_reset_email", outbox)
    return outbox


SIGNUP = {
    "email": "Ana@Mail.com",
    "username": "Ana.Lima",
    "fullName": "Ana Lima",
    "password": STRONG_PASSWORD,
}


def test_signup_verify_login_flow(client, verification_outbox):
    signup = client.post("/auth/signup", json=SIGNUP)
    assert signup.status_code == 200
    body = signup.json()
    assert body["success"] is True
    assert body["emailSent"] is True
    assert body["user"]["email"] == "ana@mail.com"
    assert body["user"]["username"] == "ana.lima"
    assert body["user"]["emailVerified"] is False
    user_id = body["user"]["id"]

    blocked = login(client, "ana.lima")
    assert blocked.status_code == 403
    assert blocked.json()["requiresVerification"] is True
    assert blocked.json()["userId"] == user_id
    assert AUTH_COOKIE not in blocked.cookies

    verified = client.post("/auth/verify-email", json={"token": verification_outbox.last_token})
    assert verified.status_code == 200

    logged_in = login(client, "ana@mail.com")
    assert logged_in.status_code == 200
    assert logged_in.json()["user"]["emailVerified"] is True
    assert logged_in.json()["sessionId"]
    assert AUTH_COOKIE in logged_in.cookies
    assert REFRESH_COOKIE in logged_in.cookies
    set_cookie = logged_in.headers.get_list("set-cookie")
    assert any(c.startswith(AUTH_COOKIE) and "HttpOnly" in c for c in set_cookie)


def test_signup_rejects_weak_password(client):
    response = client.post("/auth/signup", json={**SIGNUP, "password": "weak"})

    assert response.status_code == 400
    assert response.json()["error"] == "Weak password"
    assert len(response.json()["errors"]) >= 3


def test_signup_rejects_bad_username_and_email(client):
    response = client.post("/auth/signup", json={**SIGNUP, "username": "ana..lima", "email": "not-an-email"})

    assert response.status_code == 400
    fields = {detail["field"] for detail in response.json()["details"]}
    assert fields == {"email", "username"}


def test_signup_conflicts(client, make_user, verification_outbox):
    make_user(email="ana@mail.com", username="someone")

    email_taken = client.post("/auth/signup", json=SIGNUP)
    username_taken = client.post("/auth/signup", json={**SIGNUP, "email": "other@mail.com", "username": "someone"})

    assert email_taken.status_code == 409
    assert email_taken.json()["error"] == "Email already registered"
    assert username_taken.status_code == 409
    assert username_taken.json()["error"] == "Username already taken"
    assert verification_outbox.sent == []


def test_signup_survives_email_failure(client, monkeypatch):
    def failing(email, token):
        raise EmailSandboxError("test mode")

    monkeypatch.setattr(auth_api, "send_verification_email", failing)

    response = client.post("/auth/signup", json=SIGNUP)

    assert response.status_code == 200
    assert response.json()["emailSent"] is False


def test_signup_and_recovery_accept_the_same_addresses(client, verification_outbox, reset_outbox):
    rejected = client.post("/auth/signup", json={**SIGNUP, "email": "ana@corp.local"})
    rejected_forgot = client.post("/auth/forgot-password", json={"email": "ana@corp.local"})
    assert rejected.status_code == rejected_forgot.status_code == 400

    signup = client.post("/auth/signup", json={**SIGNUP, "email": "A.B+c@Sub.Domain.io"})
    assert signup.status_code == 200
    email = signup.json()["user"]["email"]
    assert email == "a.b+c@sub.domain.io"

    forgot = client.post("/auth/forgot-password", json={"email": email})
    resend = client.post("/auth/resend-verification", json={"email": email})

    assert forgot.status_code == 200
    assert resend.status_code == 200
    assert [sent for sent, _ in reset_outbox.sent] == [email]


def test_resend_right_after_signup_is_held_back(client, verification_outbox):
    client.post("/auth/signup", json=SIGNUP)

    response = client.post("/auth/resend-verification", json={"email": "ana@mail.com"})

    assert response.status_code == 200
    assert len(verification_outbox.sent) == 1


def test_failed_signup_email_does_not_hold_back_resend(client, monkeypatch):
    def failing(email, token):
        raise EmailDeliveryError("smtp down")

    monkeypatch.setattr(auth_api, "send_verification_email", failing)
    client.post("/auth/signup", json=SIGNUP)
    outbox = Outbox()
    monkeypatch.setattr(auth_api, "send_verification_email", outbox)

    client.post("/auth/resend-verification", json={"email": "ana@mail.com"})

    assert [email for email, _ in outbox.sent] == ["ana@mail.com"]


def test_login_rejects_bad_credentials(client, make_user):
    make_user()

    wrong_password = login(client, "ana", "Wr0ng!Pass")
    unknown_user = login(client, "ghost", STRONG_PASSWORD)

    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()


def test_me_logout_cycle(client, make_user):
    user = make_user()
    assert login(client, "ana").status_code == 200

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user.id
    assert me.json()["user"]["fullName"] == "Ana Lima"

    logout = client.post("/auth/logout")
    assert logout.status_code == 200
    assert AUTH_COOKIE not in client.cookies

    assert client.get("/auth/me").status_code == 401


def test_logout_without_session_is_fine(client):
    response = client.post("/auth/logout")

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_logout_revokes_a_copied_token(app, client, make_user):
    make_user()
    token = login(client, "ana").cookies[AUTH_COOKIE]
    client.post("/auth/logout")

    replay = TestClient(app)
    replay.cookies.set(AUTH_COOKIE, token)

    assert replay.get("/auth/me").status_code == 401


def test_logout_all_revokes_other_devices(app, make_user):
    make_user()
    laptop = TestClient(app)
    phone = TestClient(app)
    assert login(laptop, "ana").status_code == 200
    assert login(phone, "ana").status_code == 200

    response = laptop.post("/auth/logout-all")

    assert response.status_code == 200
    assert response.json()["revoked"] == 1
    assert laptop.get("/auth/me").status_code == 200
    assert phone.get("/auth/me").status_code == 401


def test_logout_all_requires_session(client):
    assert client.post("/auth/logout-all").status_code == 401


def test_sessions_listing_and_removal(app, make_user):
    make_user()
    laptop = TestClient(app, headers={"user-agent": "Laptop Browser"})
    phone = TestClient(app, headers={"user-agent": "Phone Browser"})
    current_id = login(laptop, "ana").json()["sessionId"]
    phone_id = login(phone, "ana").json()["sessionId"]

    listing = laptop.get("/auth/sessions").json()
    assert listing["total"] == 2
    by_id = {s["id"]: s for s in listing["sessions"]}
    assert by_id[current_id]["isCurrent"] is True
    assert by_id[phone_id]["isCurrent"] is False
    assert by_id[phone_id]["device"] == "Phone Browser"
    assert {"deviceId", "browser", "ip", "createdAt", "lastActiveAt"} <= set(by_id[phone_id])

    assert laptop.delete(f"/auth/sessions/{current_id}").status_code == 400
    assert laptop.delete(f"/auth/sessions/{phone_id}").status_code == 200
    assert laptop.delete(f"/auth/sessions/{phone_id}").status_code == 404
    assert phone.get("/auth/me").status_code == 401


def test_refresh_issues_a_new_access_cookie(app, client, make_user):
    make_user()
    refresh_token = login(client, "ana").cookies[REFRESH_COOKIE]

    fresh = TestClient(app)
    fresh.cookies.set(REFRESH_COOKIE, refresh_token)
    response = fresh.post("/auth/refresh")

    assert response.status_code == 200
    assert AUTH_COOKIE in response.cookies
    assert fresh.get("/auth/me").status_code == 200


def test_refresh_without_cookie(client):
    assert client.post("/auth/refresh").status_code == 401


def test_login_sends_notification(client, make_user, monkeypatch):
    sent = []
    monkeypatch.setattr(
        "echo88.workers.tasks.send_login_notification",
        lambda email, device, browser, ip, location=None: sent.append((email, ip)),
    )
    make_user()

    assert login(client, "ana").status_code == 200
    assert sent == [("ana@mail.com", "testclient")]


def test_check_availability(client, make_user):
    make_user()

    taken = client.post("/auth/check-availability", json={"email": "ANA@mail.com", "username": "ana"}).json()
    free = client.post("/auth/check-availability", json={"email": "new@mail.com", "username": "new_one"}).json()
    invalid = client.post("/auth/check-availability", json={"email": "nope", "username": ".bad"}).json()
    only_username = client.post("/auth/check-availability", json={"username": "free_name"}).json()

    assert taken["email"]["available"] is False
    assert taken["username"]["available"] is False
    assert free["email"] == {"available": True, "message": "Email available"}
    assert free["username"]["available"] is True
    assert invalid["email"]["available"] is False
    assert invalid["username"]["available"] is False
    assert "email" not in only_username


def test_user_email_only_for_unverified_accounts(client, make_user):
    pending = make_user(verified=False)
    active = make_user(email="bruno@mail.com", username="bruno")

    found = client.get("/auth/user-email", params={"userId": pending.id})
    assert found.status_code == 200
    assert found.json() == {"success": True, "email": "ana@mail.com", "emailVerified": False}

    assert client.get("/auth/user-email", params={"userId": active.id}).status_code == 404
    assert client.get("/auth/user-email", params={"userId": "missing"}).status_code == 404
    assert client.get("/auth/user-email").status_code == 400


def test_forgot_password_does_not_reveal_accounts(client, make_user, reset_outbox):
    make_user()

    known = client.post("/auth/forgot-password", json={"email": "ana@mail.com"})
    unknown = client.post("/auth/forgot-password", json={"email": "ghost@mail.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert [email for email, _ in reset_outbox.sent] == ["ana@mail.com"]


def test_forgot_password_cooldown_is_silent(client, make_user, reset_outbox):
    make_user()

    first = client.post("/auth/forgot-password", json={"email": "ana@mail.com"})
    second = client.post("/auth/forgot-password", json={"email": "ana@mail.com"})

    assert first.json() == second.json()
    assert len(reset_outbox.sent) == 1


def test_reset_password_flow(client, make_user, reset_outbox):
    make_user()
    client.post("/auth/forgot-password", json={"email": "ana@mail.com"})
    token = reset_outbox.last_token

    weak = client.post("/auth/reset-password", json={"token": token, "newPassword": "weak"})
    assert weak.status_code == 400
    assert weak.json()["errors"]

    done = client.post("/auth/reset-password", json={"token": token, "newPassword": "N3w!Password"})
    assert done.status_code == 200

    again = client.post("/auth/reset-password", json={"token": token, "newPassword": "An0ther!Password"})
    assert again.status_code == 400
    assert again.json()["error"] == "Invalid or expired token"

    assert login(client, "ana", "N3w!Password").status_code == 200


def test_reset_password_with_unknown_token(client):
    response = client.post("/auth/reset-password", json={"token": "nope", "newPassword": "N3w!Password"})

    assert response.status_code == 400


def test_verify_email_rejects_unknown_token(client):
    response = client.post("/auth/verify-email", json={"token": "nope"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid or expired token"


def test_verify_email_link_redirects(client, verification_outbox):
    client.post("/auth/signup", json=SIGNUP)
    token = verification_outbox.last_token

    ok = client.get("/auth/verify-email", params={"token": token}, follow_redirects=False)
    reused = client.get("/auth/verify-email", params={"token": token}, follow_redirects=False)

    assert ok.status_code == 307
    assert ok.headers["location"] == "http://localhost:3000/verify-email?success=true"
    assert reused.headers["location"] == "http://localhost:3000/verify-email?error=invalid_token"


def test_resend_verification_is_uniform(client, make_user, verification_outbox):
    make_user(verified=False)
    make_user(email="bruno@mail.com", username="bruno")

    pending = client.post("/auth/resend-verification", json={"email": "ana@mail.com"})
    verified = client.post("/auth/resend-verification", json={"email": "bruno@mail.com"})
    missing = client.post("/auth/resend-verification", json={"email": "ghost@mail.com"})

    assert pending.json() == verified.json() == missing.json()
    assert [email for email, _ in verification_outbox.sent] == ["ana@mail.com"]


def test_resend_verification_token_works(client, make_user, verification_outbox):
    make_user(verified=False)
    client.post("/auth/resend-verification", json={"email": "ana@mail.com"})

    response = client.post("/auth/verify-email", json={"token": verification_outbox.last_token})

    assert response.status_code == 200


def test_resend_verification_surfaces_sandbox_errors(client, make_user, monkeypatch):
    def sandboxed(email, token):
        raise EmailSandboxError("You can only send testing emails to your own email address")

    monkeypatch.setattr(auth_api, "send_verification_email", sandboxed)
    make_user(verified=False)

    response = client.post("/auth/resend-verification", json={"email": "ana@mail.com"})

    assert response.status_code == 403
    assert response.json()["guidance"]


def test_resend_verification_swallows_other_delivery_errors(client, make_user, monkeypatch):
    def broken(email, token):
        raise EmailDeliveryError("smtp down")

    monkeypatch.setattr(auth_api, "send_verification_email", broken)
    make_user(verified=False)

    response = client.post("/auth/resend-verification", json={"email": "ana@mail.com"})

    assert response.status_code == 200


def test_validation_errors_use_the_structured_format(client):
    response = client.post("/auth/login", json={"password": "x"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "emailOrUsername"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_signup_avatar_window(client, db, make_user):
    fresh = make_user(verified=False)
    stale = make_user(email="bruno@mail.com", username="bruno", verified=False)
    db.query(User).filter(User.id == stale.id).update({User.created_at: utcnow() - timedelta(minutes=10)})
    db.commit()
    url = "https://cdn.echo88.io/avatars/a.png"

    ok = client.post("/auth/update-avatar-signup", json={"userId": fresh.id, "avatarUrl": url})
    late = client.post("/auth/update-avatar-signup", json={"userId": stale.id, "avatarUrl": url})
    missing = client.post("/auth/update-avatar-signup", json={"userId": "missing", "avatarUrl": url})

    assert ok.status_code == 200
    assert late.status_code == 403
    assert missing.status_code == 404
    db.refresh(fresh)
    assert fresh.avatar_url == url


def test_update_avatar_requires_session(client, make_user):
    make_user()
    url = "https://cdn.echo88.io/avatars/a.png"

    assert client.post("/auth/update-avatar", json={"avatarUrl": url}).status_code == 401

    login(client, "ana")
    assert client.post("/auth/update-avatar", json={"avatarUrl": url}).status_code == 200
    assert client.get("/auth/me").json()["user"]["avatar"] == url


def test_avatar_upload_url_without_storage(client, make_user):
    make_user()
    login(client, "ana")

    response = client.post("/auth/avatar/upload-url", json={"filename": "me.png", "contentType": "image/png"})

    assert response.status_code == 503


def test_avatar_upload_url(client, make_user, monkeypatch):
    from echo88.api import avatar as avatar_api

    monkeypatch.setattr(avatar_api, "is_configured", lambda: True)
    monkeypatch.setattr(avatar_api, "create_presigned_upload", lambda key, content_type: f"https://s3.test/{key}?sig=1")
    monkeypatch.setattr(avatar_api, "get_file_url", lambda key: f"https://cdn.echo88.io/{key}")
    user = make_user()
    login(client, "ana")

    response = client.post("/auth/avatar/upload-url", json={"filename": "my photo.png", "contentType": "image/png"})

    assert response.status_code == 200
    body = response.json()
    assert body["key"].startswith(f"avatars/{user.id}/")
    assert body["key"].endswith("_my_photo.png")
    assert body["uploadUrl"].startswith("https://s3.test/avatars/")
    assert body["contentType"] == "image/png"


def test_avatar_upload_url_rejects_non_images(client, make_user):
    make_user()
    login(client, "ana")

    response = client.post("/auth/avatar/upload-url", json={"filename": "x.exe", "contentType": "application/x-msdownload"})

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "contentType"

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-enough-entropy"
os.environ["APP_ENV"] = "development"
os.environ["APP_URL"] = "http://localhost:3000"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["RESEND_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["AWS_ACCESS_KEY_ID"] = ""
os.environ["AWS_SECRET_ACCESS_KEY"] = ""
os.environ["AWS_S3_BUCKET_NAME"] = ""

import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from echo88.core.database import Base, get_db, init_db
from echo88.main import create_app
from echo88.models.user import User
from echo88.services.rate_limit import RateLimiter
from echo88.services.users import create_user


STRONG_PASSWORD = "Str0ng!Pass"


class FakeRedis:
    """The handful of Redis commands the rate limiter uses, in memory."""

    def __init__(self):
        self.values = {}
        self.expires = {}

    def _purge(self, key):
        expires_at = self.expires.get(key)
        if expires_at is not None and expires_at <= time.time():
            self.values.pop(key, None)
            self.expires.pop(key, None)

    def incr(self, key):
        self._purge(key)
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    def expire(self, key, seconds):
        if key not in self.values:
            return False
        self.expires[key] = time.time() + seconds
        return True

    def ttl(self, key):
        self._purge(key)
        if key not in self.values:
            return -2
        if key not in self.expires:
            return -1
        return max(int(round(self.expires[key] - time.time())), 0)

    def set(self, key, value, nx=False, ex=None):
        self._purge(key)
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex:
            self.expires[key] = time.time() + ex
        return True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def rate_limiter(fake_redis):
    return RateLimiter(fake_redis, enabled=True)


@pytest.fixture
def app(session_factory, rate_limiter):
    app = create_app(rate_limiter=rate_limiter)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make_user(
        email="ana@mail.com",
        username="ana",
        password=STRONG_PASSWORD,
        verified=True,
        full_name="Ana Lima",
    ) -> User:
        user, _token = create_user(db, email=email, username=username, full_name=full_name, password=password)
        if verified:
            user.email_verified = True
            db.commit()
            db.refresh(user)
        return user

    return _make_user


def login(client, identifier="ana@mail.com", password=STRONG_PASSWORD):
    return client.post("/auth/login", json={"emailOrUsername": identifier, "password": password})

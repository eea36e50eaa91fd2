import os

from cryptography.fernet import Fernet

# must be set before multipost.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()
os.environ["LINKEDIN_CLIENT_ID"] = "test-client-id"
os.environ["LINKEDIN_CLIENT_SECRET"] = "test-client-secret"
os.environ["LINKEDIN_REDIRECT_URI"] = "http://testserver/settings/linkedin/callback"
os.environ["FRONTEND_URL"] = "http://frontend.test"

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from multipost.db.base import Base, SessionLocal, engine
from multipost.db import crud_accounts, crud_users, models, token_crypto
from multipost.db.models import Platform
from multipost.utils.helpers import utcnow


class FakeAPI:
    """Route table behind an httpx.MockTransport, keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, status=200, json=None, headers=None, handler=None, error=None):
        self.routes[(method, path)] = (status, json, headers, handler, error)

    def calls_to(self, method, path):
        return [r for r in self.calls if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        status, body, headers, handler, error = route
        if error is not None:
            raise error
        if handler is not None:
            return handler(request)
        return httpx.Response(status, json=body, headers=headers)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    return crud_users.create_user(db, "ada@example.com")


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def client():
    from multipost.main import app

    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


def connect_linkedin(db, user_id, access="access-1", refresh="refresh-1", expires_in=3600, member_id="member-1"):
    return crud_accounts.upsert_account(
        db,
        user_id,
        Platform.LINKEDIN,
        access_token_encrypted=token_crypto.encrypt_token(access),
        refresh_token_encrypted=token_crypto.encrypt_optional(refresh),
        token_expires_at=utcnow() + timedelta(seconds=expires_in),
        platform_user_id=member_id,
    )


def connect_bluesky(db, user_id, handle="ada.bsky.social", app_password="app-pass", did="did:plc:ada"):
    return crud_accounts.upsert_account(
        db,
        user_id,
        Platform.BLUESKY,
        handle=handle,
        app_password_encrypted=token_crypto.encrypt_token(app_password),
        platform_user_id=did,
    )

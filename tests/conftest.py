"""
tests/conftest.py -- Shared test fixtures for FitTrack unit and integration tests.

This module provides:
  - Outbox: in-memory email transport that records every message
  - db_url(): a fresh named shared-memory SQLite URI
  - stores / auth_service: isolated UserStore + TokenStore + AuthService per test
  - make_user: factory fixture creating users through AuthService.create_user()
  - api: TestClient harness (client, admin token, outbox, service) per module

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because UserStore and TokenStore own separate engines, and because TestClient
runs route handlers in a thread pool. Plain :memory: DBs are per-connection
and would present a blank schema to each one. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver.
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from api.limiter import limiter  # noqa: E402
from api.main import app  # noqa: E402
from auth.email import EmailService, OutboundEmail  # noqa: E402
from auth.models import User, UserRank, UserType  # noqa: E402
from auth.service import AuthService  # noqa: E402
from auth.store import TokenStore, UserStore  # noqa: E402
from auth.tokens import hash_password  # noqa: E402
from workouts.store import WorkoutStore  # noqa: E402

# Rate limits are exercised by slowapi itself; here they would only make the
# suite order-dependent.
limiter.enabled = False

PASSWORD = "Passw0rd!"

# ---------------------------------------------------------------------------
# Email outbox
# ---------------------------------------------------------------------------


@dataclass
class Outbox:
    """Email transport that keeps messages in memory."""

    messages: list[OutboundEmail] = field(default_factory=list)

    def __call__(self, message: OutboundEmail) -> None:
        self.messages.append(message)

    def last_to(self, address: str) -> OutboundEmail:
        for message in reversed(self.messages):
            if message.to == address:
                return message
        raise AssertionError(f"no email sent to {address}")

    def code_for(self, address: str) -> str:
        """Return the 6-digit verification code from the latest email to `address`."""
        match = re.search(r"\b(\d{6})\b", self.last_to(address).text)
        assert match, "verification email carries no code"
        return match.group(1)

    def token_for(self, address: str) -> str:
        """Return the ?token= value from the latest link emailed to `address`."""
        match = re.search(r"token=(\S+)", self.last_to(address).text)
        assert match, "email carries no token link"
        return match.group(1)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def db_url(prefix: str = "fittrack") -> str:
    """Return a unique named shared-memory SQLite URI."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex[:12]}?mode=memory&cache=shared&uri=true"


def _create_user(
    service: AuthService,
    email: str,
    password: str = PASSWORD,
    verified: bool = True,
    role: str = "user",
    name: str = "Test User",
) -> User:
    """Create a user through AuthService.create_user(), bypassing the emailed code."""
    return service.create_user(
        User(
            email=email,
            hashed_password=hash_password(password),
            name=name,
            type=UserType.EMAIL.value,
            is_email_verified=verified,
            rank=UserRank.BEGINNER.value,
            role=role,
        )
    )


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def stores() -> Generator[tuple[UserStore, TokenStore], None, None]:
    """A UserStore and TokenStore sharing one fresh in-memory database."""
    url = db_url("auth")
    users = UserStore(db_url=url)
    tokens = TokenStore(db_url=url)
    yield users, tokens
    tokens.close()
    users.close()


@pytest.fixture
def auth_service(stores: tuple[UserStore, TokenStore], outbox: Outbox) -> AuthService:
    users, tokens = stores
    return AuthService(users, tokens, EmailService(outbox))


@pytest.fixture
def make_user(auth_service: AuthService):
    """Return a callable that creates users (verified by default) in the test database."""

    def factory(email: str, **kwargs) -> User:
        return _create_user(auth_service, email, **kwargs)

    return factory


@pytest.fixture
def workout_store() -> Generator[WorkoutStore, None, None]:
    store = WorkoutStore(db_url=db_url("workouts"))
    yield store
    store.close()


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    service: AuthService
    outbox: Outbox
    admin: User
    admin_token: str

    def bearer(self, token: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token or self.admin_token}"}

    def create_user(self, email: str, **kwargs) -> User:
        return _create_user(self.service, email, **kwargs)

    def sign_in(self, email: str, password: str = PASSWORD) -> dict:
        """Log in through the API and return the response body."""
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()


def _patch_lifespan(users: UserStore, tokens: TokenStore, workouts: WorkoutStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.token_store = tokens
        app.state.workout_store = workouts
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    One TestClient and one database per test module for speed; tests within
    a module use distinct email addresses. The admin user is created before
    the client starts and an access token is minted for Authorization headers.
    """
    url = db_url("api")
    users = UserStore(db_url=url)
    tokens = TokenStore(db_url=url)
    workouts = WorkoutStore(db_url=url)
    outbox = Outbox()
    service = AuthService(users, tokens, EmailService(outbox))

    admin = _create_user(service, "admin@fittrack.app", role="admin", name="Admin")
    admin_token = service.issue_auth_tokens(admin).access.token

    app.router.lifespan_context = _patch_lifespan(users, tokens, workouts, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, service=service, outbox=outbox, admin=admin, admin_token=admin_token)

    workouts.close()
    tokens.close()
    users.close()

# Shared fixtures for broker tests.
# Created: 2026-10-19

from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest

from oauthbroker.broker.database import Database
from oauthbroker.broker.models import OAuthClient
from oauthbroker.broker.server import BrokerServer
from oauthbroker.broker.upstream import UpstreamProvider
from oauthbroker.config import Settings

CLIENT_ID = "c1"
CLIENT_SECRET = "c1-secret"
CLIENT_REDIRECT = "https://app/*"

OTHER_CLIENT_ID = "c2"
OTHER_CLIENT_SECRET = "c2-secret"


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def make_id_token(claims: dict) -> str:
    """Signed JWT standing in for the upstream id_token."""
    return jwt.encode(claims, "upstream-test-signing-key-0123456789", algorithm="HS256")


@pytest.fixture
def settings():
    return Settings(
        oauth2_client_id="broker-upstream-id",
        oauth2_client_secret="broker-upstream-secret",
        sql_url="sqlite://",
        public_url="https://auth.example.test",
        failure_url="https://www.example.test",
        revoke_landing_url="https://www.example.test/",
        cookie_secure=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(clock):
    database = Database("sqlite://", now_fn=clock)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def registered_clients(db):
    from oauthbroker.broker.clients import ClientRegistry

    registry = ClientRegistry(db)
    registry.register(
        OAuthClient(client_id=CLIENT_ID, secret=CLIENT_SECRET, redirect_uri=CLIENT_REDIRECT)
    )
    registry.register(
        OAuthClient(
            client_id=OTHER_CLIENT_ID,
            secret=OTHER_CLIENT_SECRET,
            redirect_uri="https://other.example.com/callback",
        )
    )
    return registry


@pytest.fixture
def upstream(settings):
    return UpstreamProvider(settings)


@pytest.fixture
def server(db, upstream, registered_clients):
    return BrokerServer(db, upstream)


@pytest.fixture
def token_endpoint():
    """Patch httpx.AsyncClient so the upstream token endpoint answers *body*.

    Usage::

        with token_endpoint({"id_token": ...}) as mock_client:
            ...
    """

    @contextmanager
    def _patch(body=None, *, post_side_effect=None, status_error=None):
        mock_resp = MagicMock()
        mock_resp.raise_for_status = MagicMock()
        if status_error is not None:
            mock_resp.raise_for_status.side_effect = status_error
        mock_resp.json.return_value = body

        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            if post_side_effect is not None:
                mock_client.post.side_effect = post_side_effect
            else:
                mock_client.post.return_value = mock_resp
            mock_client.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client.__aexit__ = AsyncMock(return_value=False)
            mock_client_cls.return_value = mock_client
            yield mock_client

    return _patch


@pytest.fixture
def id_token():
    """Factory: ``id_token(email="alice@example.com")`` -> upstream id_token."""

    def _make(email: str | None = "alice@example.com", **claims) -> str:
        if email is not None:
            claims["email"] = email
        claims.setdefault("sub", "1234567890")
        return make_id_token(claims)

    return _make

# Broker data models.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class OAuthClient:
    """Registered client application.

    ``redirect_uri`` is a pattern; ``*`` matches any run of characters.
    """

    client_id: str
    secret: str
    redirect_uri: str


@dataclass
class Session:
    """Pending authorization request, keyed by the ``s`` cookie value."""

    client_id: str
    state: str  # CSRF state sent to the upstream provider
    callback_state: str  # caller's own state, echoed back on success
    callback_url: str


@dataclass
class AuthorizeResult:
    """Outcome of a successful authorize transition."""

    session_id: str
    redirect_url: str


@dataclass
class TokenGrant:
    """Bearer token handed to the client application exactly once."""

    refresh_token: str
    token_type: str = "bearer"


@dataclass
class SweepResult:
    sessions: int = 0
    codes: int = 0
    tokens: int = 0

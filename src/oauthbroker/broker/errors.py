"""Errors raised by the authorization flow.

Each carries a short message that is safe to show to the caller. Anything
else escaping a transition (database errors, random source failure) is an
internal error and is reported as a generic 500.
"""

from __future__ import annotations

__all__ = ["BrokerError", "ClientInputError", "NotFoundError", "UpstreamError"]


class BrokerError(Exception):
    """Base class for expected flow failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClientInputError(BrokerError):
    """Missing or malformed parameter, unknown client, redirect or state mismatch."""


class NotFoundError(ClientInputError):
    """Session or code expired, already consumed, or never existed.

    Subclasses ClientInputError so both surface as the same 400.
    """


class UpstreamError(BrokerError):
    """Talking to the identity provider failed (network, status, parsing)."""

# Upstream identity provider: authorization URL and code exchange.
# Created: 2026-10-19
#
# One server-to-server call per callback, no retries: a failed exchange
# fails the callback.

from __future__ import annotations

import asyncio
import logging
import urllib.parse

import httpx
import jwt
from jwt import PyJWKClient, PyJWKClientError

from oauthbroker.broker.errors import UpstreamError
from oauthbroker.config import Settings

logger = logging.getLogger(__name__)


class UpstreamProvider:
    """OAuth 2.0 client of the single upstream provider (Google by default).

    Supports:
    - Authorization URL generation for the redirect leg
    - Code exchange at the token endpoint
    - Email extraction from the returned ``id_token``

    The ``id_token`` arrives over a direct TLS channel from the token
    endpoint and is decoded without signature verification unless
    ``upstream_jwks_url`` is configured.
    """

    def __init__(self, settings: Settings):
        self.client_id = settings.oauth2_client_id
        self.client_secret = settings.oauth2_client_secret.get_secret_value()
        self.auth_url = settings.upstream_auth_url
        self.token_url = settings.upstream_token_url
        self.redirect_uri = settings.callback_url
        self.scope = settings.upstream_scope
        self.timeout = settings.upstream_timeout
        self.jwks_url = settings.upstream_jwks_url
        self._jwks_client: PyJWKClient | None = None

    def get_auth_url(self, state: str) -> str:
        """Build the upstream authorization URL carrying our CSRF *state*."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "access_type": "online",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.auth_url}?{urllib.parse.urlencode(params)}"

    async def exchange_code(self, code: str) -> str:
        """Exchange an upstream authorization code for the user's email.

        Raises:
            UpstreamError: transport failure, non-2xx status, malformed
                body, or an id_token without an email claim.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.token_url,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"token exchange failed: {e}") from e

        id_token = data.get("id_token") if isinstance(data, dict) else None
        if not id_token or not isinstance(id_token, str):
            raise UpstreamError("token response has no id_token")
        # JWKS fetch and decode are blocking
        return await asyncio.to_thread(self.extract_email, id_token)

    @property
    def jwks_client(self) -> PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = PyJWKClient(self.jwks_url, cache_keys=True, lifespan=3600)
        return self._jwks_client

    def extract_email(self, id_token: str) -> str:
        """Return the ``email`` claim of *id_token*."""
        try:
            if self.jwks_url:
                signing_key = self.jwks_client.get_signing_key_from_jwt(id_token)
                claims = jwt.decode(
                    id_token,
                    signing_key.key,
                    algorithms=["RS256"],
                    audience=self.client_id,
                )
            else:
                claims = jwt.decode(id_token, options={"verify_signature": False})
        except PyJWKClientError as e:
            raise UpstreamError(f"could not fetch signing key: {e}") from e
        except jwt.InvalidTokenError as e:
            raise UpstreamError(f"invalid id_token: {e}") from e

        email = claims.get("email")
        if not email or not isinstance(email, str):
            raise UpstreamError("id_token has no email claim")
        return email

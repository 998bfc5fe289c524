# Broker flow orchestrator: authorize, callback, token exchange, revoke.
# Created: 2026-10-19
#
# Per authorization attempt:
#   START --authorize--> PENDING (session) --callback--> UPSTREAM_VERIFIED (code)
#         --token--> EXCHANGED (bearer token)
# Every transition validates before writing, so a rejected request leaves
# the stores untouched.

from __future__ import annotations

import asyncio
import hmac
import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauthbroker.broker.clients import ClientRegistry, is_http_url, match_redirect
from oauthbroker.broker.database import Database
from oauthbroker.broker.errors import ClientInputError, NotFoundError
from oauthbroker.broker.models import AuthorizeResult, Session, SweepResult, TokenGrant
from oauthbroker.broker.storage import CodeStore, SessionStore, TokenStore
from oauthbroker.broker.upstream import UpstreamProvider
from oauthbroker.security.tokens import TokenCodec

logger = logging.getLogger(__name__)


def _with_query(url: str, **params: str) -> str:
    """Set *params* on *url*, keeping any query it already has."""
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in params
    ]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class BrokerServer:
    """OAuth2 broker in front of a single upstream identity provider."""

    def __init__(
        self,
        db: Database,
        upstream: UpstreamProvider,
        codec: TokenCodec | None = None,
    ):
        self.db = db
        self.upstream = upstream
        self.codec = codec or TokenCodec()
        self.clients = ClientRegistry(db)
        self.sessions = SessionStore(db, self.codec)
        self.codes = CodeStore(db)
        self.tokens = TokenStore(db, self.codec)

    def authorize(self, client_id: str, state: str, redirect_uri: str) -> AuthorizeResult:
        """Start a flow: validate the client request and open a session.

        Returns the new session id (for the ``s`` cookie) and the upstream
        URL to redirect the browser to.

        Raises:
            ClientInputError: a parameter is missing or malformed, the client
                is unknown, or *redirect_uri* does not match its pattern.
        """
        if not client_id:
            raise ClientInputError("Missing client_id parameter")
        if not state:
            raise ClientInputError("Missing state parameter")
        if not redirect_uri:
            raise ClientInputError("Missing redirect_uri parameter")
        if not is_http_url(redirect_uri):
            raise ClientInputError("Invalid redirect_uri parameter")

        client = self.clients.get_client(client_id)
        if client is None:
            logger.info("Authorize rejected: unknown client %s", client_id)
            raise ClientInputError("Invalid client_id parameter")
        if not match_redirect(client, redirect_uri):
            logger.info("Authorize rejected: redirect_uri mismatch for client %s", client_id)
            raise ClientInputError("Invalid redirect_uri parameter")

        csrf_state = self.codec.new_state()
        session_id = self.sessions.create(
            Session(
                client_id=client.client_id,
                state=csrf_state,
                callback_state=state,
                callback_url=redirect_uri,
            )
        )
        logger.debug("Session created for client %s", client.client_id)
        return AuthorizeResult(
            session_id=session_id,
            redirect_url=self.upstream.get_auth_url(csrf_state),
        )

    async def callback(self, session_id: str, state: str, code: str) -> str:
        """Finish the upstream leg and return the client's callback URL.

        The session is consumed before anything else is checked, so a
        replayed cookie fails even when the first attempt did.

        Raises:
            ClientInputError: missing parameters or cookie, state mismatch.
            NotFoundError: session unknown, expired or already used.
            UpstreamError: the code exchange or id_token parsing failed.
        """
        if not state:
            raise ClientInputError("Missing state parameter")
        if not code:
            raise ClientInputError("Missing code parameter")
        if not session_id:
            raise ClientInputError("Missing session cookie")

        session = await asyncio.to_thread(self.sessions.consume, session_id)
        if session is None:
            raise NotFoundError("Invalid session cookie")
        if not hmac.compare_digest(session.state.encode(), state.encode()):
            logger.warning("CSRF state mismatch for client %s", session.client_id)
            raise ClientInputError("Mismatch state")

        email = await self.upstream.exchange_code(code)

        return_code = self.codec.new_code()
        await asyncio.to_thread(self.codes.create, session.client_id, return_code, email)
        logger.info("Issued code for %s to client %s", email, session.client_id)

        return _with_query(session.callback_url, state=session.callback_state, code=return_code)

    def exchange(self, client_id: str, client_secret: str, code: str) -> TokenGrant:
        """Trade a one-time code for a bearer token.

        Raises:
            ClientInputError: missing parameter or bad client credentials.
            NotFoundError: code unknown, expired, used, or issued to
                another client.
        """
        if not client_id:
            raise ClientInputError("Missing client_id parameter")
        if not client_secret:
            raise ClientInputError("Missing client_secret parameter")
        if not code:
            raise ClientInputError("Missing code parameter")

        client = self.clients.get_client(client_id)
        if client is None:
            raise ClientInputError("Invalid client_id parameter")
        if not hmac.compare_digest(client.secret.encode(), client_secret.encode()):
            raise ClientInputError("Invalid client_secret parameter")

        email = self.codes.consume(client_id, code)
        if email is None:
            raise NotFoundError("Invalid code parameter")

        token = self.tokens.issue(email)
        logger.info("Issued token for %s via client %s", email, client_id)
        return TokenGrant(refresh_token=token)

    def revoke(self, token: str) -> None:
        """Delete a token if it exists. Same outcome either way."""
        if not token:
            return
        if self.tokens.revoke_by_raw_token(token):
            logger.info("Revoked token %s...", self.codec.hash_for_storage(token)[:8])

    def sweep(self) -> SweepResult:
        return self.db.sweep_expired()


# Singleton
_server: BrokerServer | None = None


def get_broker_server() -> BrokerServer:
    global _server
    if _server is None:
        from oauthbroker.config import get_settings

        settings = get_settings()
        db = Database(settings.sql_url)
        db.create_all()
        _server = BrokerServer(db, UpstreamProvider(settings))
    return _server


def reset_broker_server() -> None:
    global _server
    _server = None

# Client registry: client lookup and redirect_uri pattern matching.
# Created: 2026-10-19
#
# Clients are provisioned out-of-band (CLI add-client); the flow only reads.

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta
from functools import lru_cache
from urllib.parse import urlsplit

from sqlalchemy import insert, select

from oauthbroker.broker.database import Database, clients_table
from oauthbroker.broker.models import OAuthClient

logger = logging.getLogger(__name__)

CLIENT_CACHE_TTL = timedelta(hours=1)


@lru_cache(maxsize=256)
def compile_redirect_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a registered redirect_uri pattern into a full-string matcher.

    Everything is literal except ``*``, which matches any run of characters
    (including none). ``https://app.example.com/*`` accepts
    ``https://app.example.com/cb`` but not
    ``https://evil.com/https://app.example.com/cb``.
    """
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(body, re.DOTALL)


def match_redirect(client: OAuthClient, candidate: str) -> bool:
    return compile_redirect_pattern(client.redirect_uri).fullmatch(candidate) is not None


def is_http_url(value: str) -> bool:
    """True for an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


class ClientRegistry:
    """Read access to ``oauth2_clients``.

    Found clients are cached for ``CLIENT_CACHE_TTL``; unknown ids are not
    cached, so a newly provisioned client is visible immediately.
    """

    def __init__(self, db: Database, cache_ttl: timedelta = CLIENT_CACHE_TTL):
        self.db = db
        self.cache_ttl = cache_ttl
        self._cache: dict[str, tuple[OAuthClient, datetime]] = {}
        self._lock = threading.Lock()

    def get_client(self, client_id: str) -> OAuthClient | None:
        now = self.db.now()
        with self._lock:
            cached = self._cache.get(client_id)
        if cached is not None and now < cached[1]:
            return cached[0]

        client = self._load(client_id)
        with self._lock:
            if client is None:
                self._cache.pop(client_id, None)
            else:
                self._cache[client_id] = (client, now + self.cache_ttl)
        return client

    def invalidate(self, client_id: str | None = None) -> None:
        with self._lock:
            if client_id is None:
                self._cache.clear()
            else:
                self._cache.pop(client_id, None)

    def _load(self, client_id: str) -> OAuthClient | None:
        stmt = select(
            clients_table.c.id, clients_table.c.secret, clients_table.c.redirect_uri
        ).where(clients_table.c.id == client_id)
        with self.db.engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            return None
        return OAuthClient(client_id=row.id, secret=row.secret, redirect_uri=row.redirect_uri)

    def register(self, client: OAuthClient) -> None:
        """Provision a client. Not used by the flow itself."""
        with self.db.engine.begin() as conn:
            conn.execute(
                insert(clients_table).values(
                    id=client.client_id,
                    secret=client.secret,
                    redirect_uri=client.redirect_uri,
                )
            )
        self.invalidate(client.client_id)
        logger.info("Registered client %s (%s)", client.client_id, client.redirect_uri)

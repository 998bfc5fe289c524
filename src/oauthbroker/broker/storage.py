# Session, code and token stores.
# Created: 2026-10-19
#
# Sessions and codes are one-time records: consume() is a single
# DELETE ... RETURNING guarded by the expiry predicate, so two concurrent
# consumers of the same id see exactly one row between them.
# Tokens are stored only as hash_for_storage(raw).

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import delete, insert

from oauthbroker.broker.database import Database, codes_table, sessions_table, tokens_table
from oauthbroker.broker.models import Session
from oauthbroker.security.tokens import TokenCodec

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(hours=1)
CODE_TTL = timedelta(hours=1)
TOKEN_TTL = timedelta(days=7)


class SessionStore:
    """Pending authorize requests keyed by the session cookie."""

    def __init__(self, db: Database, codec: TokenCodec):
        self.db = db
        self.codec = codec

    def create(self, session: Session) -> str:
        """Persist *session* under a fresh id and return the id.

        The primary key is the backstop against an id collision.
        """
        session_id = self.codec.new_session_id()
        now = self.db.now()
        with self.db.engine.begin() as conn:
            conn.execute(
                insert(sessions_table).values(
                    id=session_id,
                    client_id=session.client_id,
                    state=session.state,
                    callback_state=session.callback_state,
                    callback_url=session.callback_url,
                    created_at=now,
                    expires_at=now + SESSION_TTL,
                )
            )
        return session_id

    def consume(self, session_id: str) -> Session | None:
        """Read and delete a live session; None if missing, used or expired."""
        stmt = (
            delete(sessions_table)
            .where(
                sessions_table.c.id == session_id,
                sessions_table.c.expires_at > self.db.now(),
            )
            .returning(
                sessions_table.c.client_id,
                sessions_table.c.state,
                sessions_table.c.callback_state,
                sessions_table.c.callback_url,
            )
        )
        with self.db.engine.begin() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            return None
        return Session(
            client_id=row.client_id,
            state=row.state,
            callback_state=row.callback_state,
            callback_url=row.callback_url,
        )


class CodeStore:
    """One-time authorization codes, scoped to the client they were issued for."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, client_id: str, code: str, email: str) -> None:
        now = self.db.now()
        with self.db.engine.begin() as conn:
            conn.execute(
                insert(codes_table).values(
                    id=code,
                    client_id=client_id,
                    email=email,
                    created_at=now,
                    expires_at=now + CODE_TTL,
                )
            )

    def consume(self, client_id: str, code: str) -> str | None:
        """Return the code's email and delete it; None unless id, client and expiry all match."""
        stmt = (
            delete(codes_table)
            .where(
                codes_table.c.id == code,
                codes_table.c.client_id == client_id,
                codes_table.c.expires_at > self.db.now(),
            )
            .returning(codes_table.c.email)
        )
        with self.db.engine.begin() as conn:
            row = conn.execute(stmt).first()
        return row.email if row is not None else None


class TokenStore:
    """Bearer tokens. Issue and revoke only; lookups belong to the API gateway."""

    def __init__(self, db: Database, codec: TokenCodec):
        self.db = db
        self.codec = codec

    def issue(self, email: str) -> str:
        """Store a new token for *email* and return the raw value.

        The raw value is not recoverable afterwards.
        """
        token = self.codec.new_token()
        now = self.db.now()
        with self.db.engine.begin() as conn:
            conn.execute(
                insert(tokens_table).values(
                    token=self.codec.hash_for_storage(token),
                    email=email,
                    created_at=now,
                    expires_at=now + TOKEN_TTL,
                )
            )
        return token

    def revoke_by_raw_token(self, token: str) -> bool:
        """Delete the record for a raw token. Unknown tokens are a no-op.

        Returns whether a row was removed, for logging only.
        """
        hashed = self.codec.hash_for_storage(token)
        with self.db.engine.begin() as conn:
            result = conn.execute(delete(tokens_table).where(tokens_table.c.token == hashed))
        return result.rowcount > 0

# Relational store: SQLAlchemy Core tables and engine.
# Created: 2026-10-19
#
# Four tables: oauth2_clients, oauth2_sessions, oauth2_codes, user_tokens.
# Sessions and codes carry an absolute expires_at; reads compare it against
# the caller's clock, so expired rows are invisible even before a sweep.

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import (
    Column,
    DateTime,
    Engine,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    create_engine,
    delete,
)
from sqlalchemy.pool import StaticPool

from oauthbroker.broker.models import SweepResult

logger = logging.getLogger(__name__)

metadata = MetaData()

clients_table = Table(
    "oauth2_clients",
    metadata,
    Column("id", String, primary_key=True),
    Column("secret", String, nullable=False),
    Column("redirect_uri", String, nullable=False),
)

sessions_table = Table(
    "oauth2_sessions",
    metadata,
    Column("id", String, primary_key=True),
    Column("client_id", String, nullable=False),
    Column("state", String, nullable=False),
    Column("callback_state", String, nullable=False),
    Column("callback_url", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
)

codes_table = Table(
    "oauth2_codes",
    metadata,
    Column("id", String, nullable=False),
    Column("client_id", String, nullable=False),
    Column("email", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
    PrimaryKeyConstraint("id", "client_id"),
)

tokens_table = Table(
    "user_tokens",
    metadata,
    Column("token", String, primary_key=True),  # hash_for_storage(raw token)
    Column("email", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def _make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty DB
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


class Database:
    """Engine holder shared by the stores.

    ``now_fn`` is the single clock for every expiry comparison.
    """

    def __init__(self, url: str, now_fn: Callable[[], datetime] | None = None):
        self.url = url
        self.engine = _make_engine(url)
        self.now = now_fn or utcnow

    def create_all(self) -> None:
        metadata.create_all(self.engine)
        logger.debug("Schema ready on %s", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()

    def sweep_expired(self) -> SweepResult:
        """Delete rows whose expiry has passed."""
        now = self.now()
        with self.engine.begin() as conn:
            result = SweepResult(
                sessions=conn.execute(
                    delete(sessions_table).where(sessions_table.c.expires_at <= now)
                ).rowcount,
                codes=conn.execute(
                    delete(codes_table).where(codes_table.c.expires_at <= now)
                ).rowcount,
                tokens=conn.execute(
                    delete(tokens_table).where(tokens_table.c.expires_at <= now)
                ).rowcount,
            )
        logger.info(
            "Swept %d sessions, %d codes, %d tokens",
            result.sessions,
            result.codes,
            result.tokens,
        )
        return result

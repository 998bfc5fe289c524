# Tests for broker/storage.py and broker/database.py
# Created: 2026-10-19

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import select

from oauthbroker.broker.database import Database, tokens_table
from oauthbroker.broker.models import Session
from oauthbroker.broker.storage import CodeStore, SessionStore, TokenStore
from oauthbroker.security.tokens import TOKEN_PREFIX, TokenCodec


def _session(**overrides) -> Session:
    fields = {
        "client_id": "c1",
        "state": "csrf-state",
        "callback_state": "xyz",
        "callback_url": "https://app/cb",
    }
    fields.update(overrides)
    return Session(**fields)


@pytest.fixture
def codec():
    return TokenCodec()


@pytest.fixture
def sessions(db, codec):
    return SessionStore(db, codec)


@pytest.fixture
def codes(db):
    return CodeStore(db)


@pytest.fixture
def tokens(db, codec):
    return TokenStore(db, codec)


# ---------------------------------------------------------------------------
# SessionStore
# ---------------------------------------------------------------------------


class TestSessionStore:
    def test_create_and_consume(self, sessions):
        session_id = sessions.create(_session())
        assert sessions.consume(session_id) == _session()

    def test_ids_are_unique(self, sessions):
        ids = {sessions.create(_session()) for _ in range(50)}
        assert len(ids) == 50

    def test_consume_once(self, sessions):
        session_id = sessions.create(_session())
        assert sessions.consume(session_id) is not None
        assert sessions.consume(session_id) is None

    def test_unknown_id(self, sessions):
        assert sessions.consume("does-not-exist") is None

    def test_consumable_before_one_hour(self, sessions, clock):
        session_id = sessions.create(_session())
        clock.advance(timedelta(minutes=59))
        assert sessions.consume(session_id) is not None

    def test_expired_after_one_hour(self, sessions, clock):
        session_id = sessions.create(_session())
        clock.advance(timedelta(minutes=61))
        assert sessions.consume(session_id) is None

    def test_expired_at_exactly_one_hour(self, sessions, clock):
        session_id = sessions.create(_session())
        clock.advance(timedelta(hours=1))
        assert sessions.consume(session_id) is None


# ---------------------------------------------------------------------------
# CodeStore
# ---------------------------------------------------------------------------


class TestCodeStore:
    def test_create_and_consume(self, codes):
        codes.create("c1", "code-1", "alice@example.com")
        assert codes.consume("c1", "code-1") == "alice@example.com"

    def test_consume_once(self, codes):
        codes.create("c1", "code-1", "alice@example.com")
        assert codes.consume("c1", "code-1") == "alice@example.com"
        assert codes.consume("c1", "code-1") is None

    def test_other_client_cannot_consume(self, codes):
        codes.create("c1", "code-1", "alice@example.com")
        assert codes.consume("c2", "code-1") is None
        # The failed attempt must not burn the code for its owner
        assert codes.consume("c1", "code-1") == "alice@example.com"

    def test_unknown_code(self, codes):
        assert codes.consume("c1", "nope") is None

    def test_consumable_before_one_hour(self, codes, clock):
        codes.create("c1", "code-1", "alice@example.com")
        clock.advance(timedelta(minutes=59))
        assert codes.consume("c1", "code-1") == "alice@example.com"

    def test_expired_after_one_hour(self, codes, clock):
        codes.create("c1", "code-1", "alice@example.com")
        clock.advance(timedelta(minutes=61))
        assert codes.consume("c1", "code-1") is None

    def test_expired_at_exactly_one_hour(self, codes, clock):
        codes.create("c1", "code-1", "alice@example.com")
        clock.advance(timedelta(hours=1))
        assert codes.consume("c1", "code-1") is None


# ---------------------------------------------------------------------------
# Concurrent consumption (file-backed DB, one connection per thread)
# ---------------------------------------------------------------------------


@pytest.fixture
def file_db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'broker.db'}")
    database.create_all()
    yield database
    database.dispose()


def _race(fn, workers: int = 8) -> list:
    barrier = threading.Barrier(workers)

    def _run():
        barrier.wait()
        return fn()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_run) for _ in range(workers)]
        return [f.result() for f in futures]


class TestConcurrentConsume:
    def test_code_consumed_exactly_once(self, file_db):
        codes = CodeStore(file_db)
        codes.create("c1", "race-code", "alice@example.com")

        results = _race(lambda: codes.consume("c1", "race-code"))

        assert results.count("alice@example.com") == 1
        assert results.count(None) == len(results) - 1

    def test_session_consumed_exactly_once(self, file_db):
        sessions = SessionStore(file_db, TokenCodec())
        session_id = sessions.create(_session())

        results = _race(lambda: sessions.consume(session_id))

        winners = [r for r in results if r is not None]
        assert winners == [_session()]


# ---------------------------------------------------------------------------
# TokenStore
# ---------------------------------------------------------------------------


class TestTokenStore:
    def _stored_rows(self, db):
        with db.engine.connect() as conn:
            return conn.execute(select(tokens_table)).all()

    def test_issue_returns_prefixed_token(self, tokens):
        assert tokens.issue("alice@example.com").startswith(TOKEN_PREFIX)

    def test_only_hash_is_stored(self, tokens, db, codec):
        raw = tokens.issue("alice@example.com")
        rows = self._stored_rows(db)
        assert len(rows) == 1
        assert rows[0].token == codec.hash_for_storage(raw)
        assert rows[0].email == "alice@example.com"
        for row in rows:
            assert raw not in tuple(str(v) for v in row)

    def test_expires_in_seven_days(self, tokens, db, clock):
        tokens.issue("alice@example.com")
        row = self._stored_rows(db)[0]
        assert row.expires_at.replace(tzinfo=None) == (
            clock.now + timedelta(days=7)
        ).replace(tzinfo=None)

    def test_revoke(self, tokens, db):
        raw = tokens.issue("alice@example.com")
        assert tokens.revoke_by_raw_token(raw) is True
        assert self._stored_rows(db) == []

    def test_revoke_unknown_is_noop(self, tokens, db):
        tokens.issue("alice@example.com")
        assert tokens.revoke_by_raw_token("deploys-api.unknown") is False
        assert len(self._stored_rows(db)) == 1

    def test_revoke_twice(self, tokens):
        raw = tokens.issue("alice@example.com")
        tokens.revoke_by_raw_token(raw)
        assert tokens.revoke_by_raw_token(raw) is False


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


class TestSweep:
    def test_removes_only_expired_rows(self, db, sessions, codes, tokens, clock):
        sessions.create(_session())
        codes.create("c1", "old-code", "alice@example.com")
        tokens.issue("alice@example.com")

        clock.advance(timedelta(hours=2))
        fresh_session = sessions.create(_session())
        codes.create("c1", "new-code", "bob@example.com")

        result = db.sweep_expired()
        assert (result.sessions, result.codes, result.tokens) == (1, 1, 0)

        assert sessions.consume(fresh_session) is not None
        assert codes.consume("c1", "new-code") == "bob@example.com"

    def test_sweeps_tokens_after_seven_days(self, db, tokens, clock):
        tokens.issue("alice@example.com")
        clock.advance(timedelta(days=7, seconds=1))
        assert db.sweep_expired().tokens == 1

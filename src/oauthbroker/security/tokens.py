"""Random identifiers and one-way token hashing.

Every identifier that crosses the network boundary (session cookie, CSRF
state, authorization code, bearer token) comes from ``TokenCodec``:

- session id / code / token: 32 random bytes
- CSRF state: 24 random bytes
- bearer tokens carry the ``deploys-api.`` prefix; the others carry none

Only ``hash_for_storage(token)`` is ever written to the database.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

__all__ = ["TOKEN_PREFIX", "TokenCodec"]

TOKEN_PREFIX = "deploys-api."


class TokenCodec:
    """Randomness + hashing capability injected into the broker.

    Tests substitute a subclass with deterministic ``generate_random``.
    """

    def generate_random(self, nbytes: int) -> str:
        """Return *nbytes* of CSPRNG output, base64url encoded (unpadded).

        ``secrets`` draws from the OS CSPRNG; if that fails the OSError is
        left to propagate, no weaker fallback is attempted.
        """
        raw = secrets.token_bytes(nbytes)
        if len(raw) != nbytes:
            raise OSError("short read from random source")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    def hash_for_storage(self, token: str) -> str:
        digest = hashlib.sha256(token.encode()).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()

    def new_session_id(self) -> str:
        return self.generate_random(32)

    def new_state(self) -> str:
        return self.generate_random(24)

    def new_code(self) -> str:
        return self.generate_random(32)

    def new_token(self) -> str:
        return TOKEN_PREFIX + self.generate_random(32)

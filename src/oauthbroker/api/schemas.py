# Broker API schemas.
# Created: 2026-10-19

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """Successful token exchange."""

    refresh_token: str
    token_type: str = "bearer"


class RevokeRequest(BaseModel):
    """Token revocation request (JSON body of POST /revoke)."""

    token: str = ""


class APIError(BaseModel):
    message: str


class APIResult(BaseModel):
    """``{"ok": ..., "result": ..., "error": ...}`` envelope used by POST /revoke."""

    ok: bool
    result: dict[str, Any] | None = Field(default=None)
    error: APIError | None = None

    @classmethod
    def success(cls, result: dict[str, Any] | None = None) -> dict[str, Any]:
        return cls(ok=True, result=result or {}).model_dump(exclude_none=True)

    @classmethod
    def failure(cls, message: str) -> dict[str, Any]:
        return cls(ok=False, error=APIError(message=message)).model_dump(exclude_none=True)

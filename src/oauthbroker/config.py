# Broker configuration: loaded from environment / .env.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from the environment.

    Variable names are the upper-cased field names (``OAUTH2_CLIENT_ID``,
    ``SQL_URL``, ``PORT``...), no prefix.
    """

    # Credentials of this broker at the upstream identity provider
    oauth2_client_id: str = ""
    oauth2_client_secret: SecretStr = SecretStr("")

    sql_url: str = "sqlite:///oauthbroker.db"

    host: str = "127.0.0.1"
    port: int = 8080

    # External base URL; upstream returns to {public_url}/callback
    public_url: str = "https://auth.deploys.app"

    upstream_auth_url: str = "https://accounts.google.com/o/oauth2/auth"
    upstream_token_url: str = "https://oauth2.googleapis.com/token"
    upstream_scope: str = "https://www.googleapis.com/auth/userinfo.email"
    upstream_timeout: float = 15.0
    upstream_jwks_url: str | None = None

    failure_url: str = "https://www.deploys.app"
    revoke_landing_url: str = "https://www.deploys.app/"

    cookie_secure: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def callback_url(self) -> str:
        """Fixed return endpoint registered at the upstream provider."""
        return self.public_url.rstrip("/") + "/callback"


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None

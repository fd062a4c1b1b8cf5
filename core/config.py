"""
core/config.py -- VPlan server settings (pydantic-settings).

Every environment variable the server reads is declared on Settings below;
other modules take a Settings instance or call get_settings(), never os.environ.

  get_settings() is lru_cached, so the environment and .env are read once per
  process. Field names double as env var names (token_ttl_seconds <->
  TOKEN_TTL_SECONDS), case-insensitively.

  Cross-field rules run in @model_validator(mode="after") hooks:
    - SECRET_KEY signs session cookies and must be >= 32 chars. With DEBUG=true
      a random key is generated (sessions end on restart); without DEBUG a
      missing key aborts startup.
    - AUTH_PROVIDER=debug accepts the fixed test/passwd login and is refused
      unless DEBUG=true.
    - AUTH_PROVIDER=oidc needs both identity-provider endpoints.

Layer rule: core/ imports nothing from api/, web/, auth/ or vplan/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("vplan.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'vplan.db'}"


class Settings(BaseSettings):
    """Server configuration. Every field has a default except a production SECRET_KEY."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" until validate_secret_key fills or rejects it
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth provider
    # ------------------------------------------------------------------

    auth_provider: Literal["debug", "database", "oidc"] = "database"

    # External identity source (resource-owner password grant)
    oidc_token_url: str = ""
    oidc_userinfo_url: str = ""
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_scope: str = "openid profile email"

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    token_ttl_seconds: int = 7 * 24 * 3600
    token_purge_interval_seconds: int = 6 * 3600

    session_cookie_name: str = "vplan_session"
    session_max_age: int = 24 * 3600
    # "remember me" duration, used when the login request sends session > 1
    remember_max_age: int = 30 * 24 * 3600
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting (one bucket per endpoint family)
    # ------------------------------------------------------------------

    rate_limit_authenticate: str = "10/minute"
    rate_limit_logout: str = "20/minute"
    rate_limit_vplan: str = "60/minute"
    rate_limit_news: str = "60/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a throwaway key in debug mode; otherwise require a real one."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("DEBUG mode: generated a random SECRET_KEY, sessions end on restart")
            else:
                raise ValueError("SECRET_KEY is required unless DEBUG=true (set it in the environment or .env).")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long.")
        return self

    @model_validator(mode="after")
    def validate_auth_provider(self) -> "Settings":
        if self.auth_provider == "debug" and not self.debug:
            raise ValueError("AUTH_PROVIDER=debug is only allowed with DEBUG=true.")
        if self.auth_provider == "oidc" and not (self.oidc_token_url and self.oidc_userinfo_url):
            raise ValueError("AUTH_PROVIDER=oidc requires OIDC_TOKEN_URL and OIDC_USERINFO_URL.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()

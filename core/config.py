"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Nevi happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Redirect targets must be server-local paths
      so a misconfigured LOGIN_URL cannot turn every auth failure into an open
      redirect.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, store/, or activity/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("nevi.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'store' / 'nevi.db'}"

# Ten years, matching the lifetime the remember-me cookie has always carried.
_TEN_YEARS = 10 * 365 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    site_name: str = "Nevi"
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "session_id"
    remember_cookie_name: str = "remember_me"
    remember_cookie_max_age: int = _TEN_YEARS

    # ------------------------------------------------------------------
    # Redirect targets handed to the auth check by the web layer
    # ------------------------------------------------------------------

    login_url: str = "/login"
    mfa_url: str = "/verify"

    # ------------------------------------------------------------------
    # Password recovery mail (empty smtp_host disables recovery mail)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = False
    mail_from: str = "no-reply@localhost"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_redirects(self) -> "Settings":
        """Reject redirect targets that would leave the site, and non-positive cookie lifetimes."""
        for name in ("login_url", "mfa_url"):
            value = getattr(self, name)
            if not value.startswith("/") or value.startswith("//"):
                raise ValueError(f"{name.upper()} must be a relative path, got {value!r}")
        if self.remember_cookie_max_age <= 0:
            raise ValueError("REMEMBER_COOKIE_MAX_AGE must be a positive number of seconds.")
        if self.debug and not self.smtp_host:
            logger.warning("SMTP_HOST is not set -- password recovery mail is disabled.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

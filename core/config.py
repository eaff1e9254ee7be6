"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth server happen here. No module should
call os.getenv() or os.environ.get() directly. Services receive the Settings
object through their constructors; only the assembly points (api/main.py and
main.py) call get_settings().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Used for the DEBUG-conditional SECRET_KEY logic and for the
      rule that CAPTCHA may only be switched off in development.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key makes HS256 tokens forgeable.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random key would silently invalidate every
       refresh token on restart.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import re
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("srpauth.config")

_ROOT = Path(__file__).resolve().parent.parent

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}
_DEFAULT_DURATION = 7 * 24 * 60 * 60  # 7 days

SUPPORTED_SRP_HASHES = ("sha1", "sha256", "sha384", "sha512")


def duration_to_seconds(duration: str) -> int:
    """Convert a duration string like "15m" or "7d" to seconds.

    Accepted units: s, m, h, d. Anything else (missing unit, decimals,
    negative numbers, empty string) falls back to 7 days.
    """
    match = _DURATION_RE.match(duration or "")
    if not match:
        return _DEFAULT_DURATION
    value, unit = match.groups()
    return int(value) * _DURATION_UNITS[unit]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model validators enforce
    production-safety rules at startup.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_access_expires_in: str = "15m"
    jwt_refresh_expires_in: str = "7d"

    # ------------------------------------------------------------------
    # SRP-6a
    # ------------------------------------------------------------------

    # Must match the client library's hash. The group is fixed (RFC 5054, 2048-bit).
    srp_hash: str = "sha512"
    srp_session_ttl_seconds: int = 300

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{_ROOT / 'auth' / 'srpauth_credentials.db'}"
    session_backend: str = "sqlite"  # "sqlite" or "redis"
    session_db_path: str = str(_ROOT / "cache" / "srpauth_sessions.db")
    redis_url: str = "redis://localhost:6379/0"

    # ------------------------------------------------------------------
    # CAPTCHA (Cloudflare Turnstile)
    # ------------------------------------------------------------------

    captcha_enabled: bool = True
    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:5173"]

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl(self) -> int:
        return duration_to_seconds(self.jwt_access_expires_in)

    @property
    def refresh_token_ttl(self) -> int:
        return duration_to_seconds(self.jwt_refresh_expires_in)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("srp_hash")
    @classmethod
    def validate_srp_hash(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_SRP_HASHES:
            raise ValueError(f"SRP_HASH must be one of {', '.join(SUPPORTED_SRP_HASHES)}.")
        return value

    @field_validator("session_backend")
    @classmethod
    def validate_session_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("sqlite", "redis"):
            raise ValueError("SESSION_BACKEND must be 'sqlite' or 'redis'.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_captcha(self) -> "Settings":
        """CAPTCHA can only be switched off in development mode."""
        if not self.captcha_enabled and not self.debug:
            raise ValueError("CAPTCHA_ENABLED=false is only allowed with DEBUG=true.")
        if self.captcha_enabled and not self.turnstile_secret_key:
            logger.warning("TURNSTILE_SECRET_KEY is not set -- every CAPTCHA check will fail.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: build Settings(...) directly and pass it to constructors, or
    call get_settings.cache_clear() after changing environment variables.
    """
    return Settings()

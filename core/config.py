"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for Portcullis happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or build a Settings instance explicitly and hand it to the components.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, ldap_bind_dn -> LDAP_BIND_DN).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev mode
      generates a key with a warning, production mode refuses to start.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The session
       cookie HMAC relies on key entropy.

  [M7] In production mode a missing SECRET_KEY is a hard startup failure.
       A random key would silently log every user out on each restart.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("portcullis.config")


class Settings(BaseSettings):
    """Process configuration loaded from environment variables and .env file.

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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Optional. When set, session cookies are encrypted as well as signed.
    encryption_secret: str = ""

    # ------------------------------------------------------------------
    # Local users
    # ------------------------------------------------------------------

    # Comma-separated "username:bcrypt-hash" entries.
    users: str = ""
    # One "username:bcrypt-hash" entry per line; merged with `users`.
    users_file: str = ""

    # ------------------------------------------------------------------
    # Session cookie
    # ------------------------------------------------------------------

    session_cookie_name: str = "portcullis_session"
    cookie_secure: bool = False
    # Parent domain the cookie is scoped to (".<domain>"). Empty = host-only.
    domain: str = ""
    session_expiry: int = 86400

    # ------------------------------------------------------------------
    # Brute-force protection (0 disables)
    # ------------------------------------------------------------------

    login_max_retries: int = 5
    login_timeout: int = 300

    # ------------------------------------------------------------------
    # Request extraction
    # ------------------------------------------------------------------

    # Global OAuth email whitelist, comma-separated. Empty = everyone.
    oauth_whitelist: str = ""
    # Comma-separated addresses/CIDRs whose X-Forwarded-For is trusted.
    trusted_proxies: str = ""

    # ------------------------------------------------------------------
    # LDAP (optional -- empty address means the backend is disabled)
    # ------------------------------------------------------------------

    ldap_address: str = ""
    ldap_bind_dn: str = ""
    ldap_bind_password: str = ""
    ldap_base_dn: str = ""
    ldap_search_filter: str = "(uid=%s)"
    ldap_insecure: bool = False
    ldap_timeout: int = 5

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def ldap_configured(self) -> bool:
        return bool(self.ldap_address)

    @property
    def cookie_domain(self) -> str | None:
        return f".{self.domain}" if self.domain else None

    def local_users(self) -> list[tuple[str, str]]:
        """Return (username, password_hash) pairs from `users` and `users_file`.

        bcrypt hashes contain '$' but never ':', so the first colon separates
        the username from the hash. Malformed entries raise ValueError: a
        typo in the user list should stop the process, not lock someone out.
        """
        entries = [e for e in self.users.split(",") if e.strip()]
        if self.users_file:
            text = Path(self.users_file).read_text(encoding="utf-8")
            entries.extend(line for line in text.splitlines() if line.strip() and not line.startswith("#"))

        parsed: list[tuple[str, str]] = []
        for entry in entries:
            username, sep, password_hash = entry.strip().partition(":")
            if not sep or not username or not password_hash:
                raise ValueError(f"Invalid user entry {entry.strip()!r}; expected 'username:hash'")
            parsed.append((username, password_hash))
        return parsed


@lru_cache
def get_settings() -> Settings:
    """Return the process Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

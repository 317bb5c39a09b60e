"""
tests/conftest.py -- Shared fixtures for Portcullis tests.

This module provides:
  - settings: a Settings instance with a fixed SECRET_KEY (no .env needed)
  - clock: a controllable time source for the rate limiter and sessions
  - make_request: builds a Starlette Request with headers/cookies/client IP
  - set_cookies: parses Set-Cookie headers off a Response
  - alice: a local user with a known password (bcrypt, hashed once)
  - fake_ldap: an LDAPClient wired to an in-memory FakeConnection

Design: components are built from explicit Settings objects rather than the
get_settings() singleton, so each test controls its own configuration and
nothing leaks between tests through the lru_cache.
"""

from __future__ import annotations

from collections.abc import Callable
from http.cookies import SimpleCookie

import pytest
from starlette.requests import Request
from starlette.responses import Response

from auth.ldap import LDAPClient, LDAPConfig
from auth.models import User
from auth.tokens import hash_password
from core.config import Settings
from tests.helpers import (
    ALICE_PASSWORD,
    BOB_DN,
    BOB_PASSWORD,
    SERVICE_DN,
    SERVICE_PASSWORD,
    TEST_SECRET,
    FakeClock,
    FakeConnection,
)

# ---------------------------------------------------------------------------
# Time and settings
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        secret_key=TEST_SECRET,
        domain="example.com",
        session_expiry=86400,
        login_max_retries=3,
        login_timeout=60,
    )


@pytest.fixture(scope="session")
def alice() -> User:
    return User(username="alice", password_hash=hash_password(ALICE_PASSWORD))


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_request() -> Callable[..., Request]:
    def _make(
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
        client: str = "203.0.113.7",
    ) -> Request:
        raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
        if cookies:
            raw.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode("latin-1")))
        scope = {
            "type": "http",
            "method": "GET",
            "path": "/api/auth",
            "query_string": b"",
            "headers": raw,
            "client": (client, 51234),
        }
        return Request(scope)

    return _make


@pytest.fixture
def set_cookies() -> Callable[[Response], dict[str, SimpleCookie]]:
    """Return a parser mapping cookie name -> SimpleCookie for each Set-Cookie header."""

    def _parse(response: Response) -> dict[str, SimpleCookie]:
        parsed: dict[str, SimpleCookie] = {}
        for header in response.headers.getlist("set-cookie"):
            cookie = SimpleCookie()
            cookie.load(header)
            for name in cookie:
                parsed[name] = cookie
        return parsed

    return _parse


# ---------------------------------------------------------------------------
# LDAP
# ---------------------------------------------------------------------------


@pytest.fixture
def ldap_config() -> LDAPConfig:
    return LDAPConfig(
        address="ldap://ldap.example.com",
        bind_dn=SERVICE_DN,
        bind_password=SERVICE_PASSWORD,
        base_dn="dc=example,dc=com",
    )


@pytest.fixture
def fake_ldap(ldap_config: LDAPConfig) -> tuple[LDAPClient, FakeConnection]:
    conn = FakeConnection(
        accounts={SERVICE_DN: SERVICE_PASSWORD, BOB_DN: BOB_PASSWORD},
        directory={"(uid=bob)": [BOB_DN], "(uid=twins)": ["uid=a,dc=x", "uid=b,dc=x"]},
    )
    return LDAPClient(ldap_config, connection_factory=lambda: conn), conn

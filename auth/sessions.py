"""
auth/sessions.py -- Client-held session lifecycle (create / read / delete).

There is no server-side session store. The SessionRecord's only persistent
form is the signed (optionally encrypted) cookie produced by TokenCodec. This
module owns the single encode/decode boundary between that cookie and the
SessionRecord dataclass.

Validity rule:
  A session is valid only if the token decodes, every one of the seven
  claims is present with the right type, and now < expiry. Anything else is
  one "invalid session" branch: the cookie is cleared and read() returns None.
  An unreadable session means "not authenticated", never a hard error.

Expiry:
  TOTP-pending sessions always live TOTP_PENDING_EXPIRY seconds. Full sessions
  live Settings.session_expiry seconds.

Cookie transport is a Starlette Request (read side) and Response (write side),
the same objects FastAPI hands to route handlers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace

from pydantic import BaseModel, ConfigDict, ValidationError
from starlette.requests import Request
from starlette.responses import Response

from auth.exceptions import InvalidSessionError, SessionError
from auth.models import SessionRecord
from auth.tokens import TokenCodec
from core.config import Settings

logger = logging.getLogger("portcullis.auth.sessions")

TOTP_PENDING_EXPIRY = 3600


class SessionClaims(BaseModel):
    """Wire schema of the session cookie.

    strict=True: "expiry" must be a real int (a bool or a string is rejected)
    and "totpPending" a real bool, so a record that decodes is a record that
    is complete.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    username: str
    name: str
    email: str
    provider: str
    expiry: int
    totpPending: bool
    oauthGroups: str

    @classmethod
    def from_record(cls, record: SessionRecord) -> "SessionClaims":
        return cls(
            username=record.username,
            name=record.name,
            email=record.email,
            provider=record.provider,
            expiry=record.expires_at,
            totpPending=record.totp_pending,
            oauthGroups=record.oauth_groups,
        )

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            username=self.username,
            name=self.name,
            email=self.email,
            provider=self.provider,
            expires_at=self.expiry,
            totp_pending=self.totpPending,
            oauth_groups=self.oauthGroups,
        )


class SessionManager:
    """Encode/decode SessionRecords into the session cookie.

    Usage:
        sessions = SessionManager(settings)
        sessions.create(response, SessionRecord(username="alice", ...))
        record = sessions.read(request, response)   # SessionRecord or None
        sessions.delete(response)
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self.cookie_name = settings.session_cookie_name
        self.session_expiry = settings.session_expiry
        self._secure = settings.cookie_secure
        self._domain = settings.cookie_domain
        self._codec = TokenCodec(settings.secret_key, settings.encryption_secret)
        self._clock = clock

    # ------------------------------------------------------------------
    # Encode / decode boundary
    # ------------------------------------------------------------------

    def encode(self, record: SessionRecord) -> str:
        try:
            claims = SessionClaims.from_record(record)
        except ValidationError as exc:
            raise SessionError(f"cannot encode incomplete session record: {exc.error_count()} invalid field(s)") from exc
        return self._codec.encode(claims.model_dump())

    def decode(self, token: str) -> SessionRecord:
        """Return the SessionRecord carried by token, or raise InvalidSessionError.

        Does not check expiry; read() does.
        """
        claims = self._codec.decode(token)
        try:
            return SessionClaims.model_validate(claims).to_record()
        except ValidationError as exc:
            raise InvalidSessionError(f"incomplete session record: {exc.error_count()} invalid field(s)") from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, response: Response, record: SessionRecord) -> str:
        """Write a fresh session cookie for record and return the cookie value.

        Expiry is recomputed here; record.expires_at is ignored. Any prior
        session cookie is overwritten. Raises SessionError if encoding fails.
        """
        lifetime = TOTP_PENDING_EXPIRY if record.totp_pending else self.session_expiry
        record = replace(record, expires_at=int(self._clock()) + lifetime)
        token = self.encode(record)
        response.set_cookie(
            self.cookie_name,
            value=token,
            max_age=self.session_expiry,
            path="/",
            domain=self._domain,
            secure=self._secure,
            httponly=True,
            samesite="lax",
        )
        logger.debug("Session cookie created for %r (totp_pending=%s)", record.username, record.totp_pending)
        return token

    def read(self, request: Request, response: Response) -> SessionRecord | None:
        """Return the live SessionRecord for request, or None.

        Never raises for a bad cookie: decode failures, incomplete records and
        expired records all clear the cookie on response and yield None.
        """
        token = request.cookies.get(self.cookie_name, "")
        if not token:
            return None

        try:
            record = self.decode(token)
        except InvalidSessionError as exc:
            logger.warning("Invalid session cookie, clearing it: %s", exc)
            self.delete(response)
            # Retrying against the cleared cookie yields an empty session.
            return None

        if int(self._clock()) >= record.expires_at:
            logger.warning("Session cookie for %r expired", record.username)
            self.delete(response)
            return None

        logger.debug("Session cookie parsed for %r (provider=%s)", record.username, record.provider)
        return record

    def delete(self, response: Response) -> None:
        """Clear the session cookie. Safe to call when no cookie exists."""
        response.delete_cookie(
            self.cookie_name,
            path="/",
            domain=self._domain,
            secure=self._secure,
            httponly=True,
            samesite="lax",
        )

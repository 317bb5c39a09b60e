"""
auth/engine.py -- Forward-auth facade composing the engine's components.

Decision order for authenticate():
  1. IP policy         -- a blocked client never gets further.
  2. URI bypass        -- a matching allowed_uri_pattern skips authentication.
  3. Session cookie    -- a live, complete, unexpired session is an identity.
                          A TOTP-pending session is not (second factor owed).
  4. Basic credentials -- verified against the credential store, gated by the
                          rate limiter. Never creates a session cookie.
  5. Authorization     -- user/email whitelist, then OAuth group membership.

Lockout takes precedence over the credential check: a locked identifier is
refused without consulting any backend, so a correct password during the
lockout window still fails.

Every failure reaches the caller as a Decision with allowed=False and a coarse
reason. Whether a username exists, or which backend was tried, is never part
of it.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import Response

from auth.credentials import CredentialStore
from auth.dependencies import get_basic_auth, get_client_ip, get_forwarded_uri, parse_trusted_proxies
from auth.models import Decision, LoginResult, RequestIdentity, ResourcePolicy, SessionRecord
from auth.policy import AccessPolicyEvaluator
from auth.ratelimit import RateLimiter
from auth.sessions import SessionManager
from core.config import Settings

logger = logging.getLogger("portcullis.auth.engine")

# Provider recorded for identities that logged in with a username/password.
USERNAME_PROVIDER = "username"


class AuthEngine:
    """Answer "is this request authenticated?" and "is this identity authorized?".

    Usage:
        engine = AuthEngine.from_settings(get_settings())
        decision = engine.authenticate(request, response, policy)
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        rate_limiter: RateLimiter,
        sessions: SessionManager,
        evaluator: AccessPolicyEvaluator,
    ) -> None:
        self.settings = settings
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.evaluator = evaluator
        self._trusted_proxies = parse_trusted_proxies(settings.trusted_proxies)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthEngine":
        return cls(
            settings=settings,
            credentials=CredentialStore.from_settings(settings),
            rate_limiter=RateLimiter(settings.login_max_retries, settings.login_timeout),
            sessions=SessionManager(settings),
            evaluator=AccessPolicyEvaluator(settings.oauth_whitelist),
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, client_ip: str = "") -> LoginResult:
        """Verify username/password, rate-limited per username and per client IP."""
        identifiers = [username] + ([client_ip] if client_ip else [])

        for identifier in identifiers:
            locked, remaining = self.rate_limiter.is_locked(identifier)
            if locked:
                logger.warning("Login for %r refused, %r locked for another %ds", username, identifier, remaining)
                return LoginResult(success=False, locked=True, retry_after=remaining)

        result = self.credentials.search(username)
        if result.found:
            ok = self.credentials.verify(result, password)
        else:
            # Unknown user: burn the same bcrypt time as a real check [C1]
            ok = self.credentials.check_password(None, password)

        for identifier in identifiers:
            self.rate_limiter.record_attempt(identifier, success=ok)

        if not ok:
            logger.warning("Login failed for %r", username)
            return LoginResult(success=False)

        logger.info("Login succeeded for %r", username)
        return LoginResult(success=True, identity=self._local_identity(username))

    def _local_identity(self, username: str) -> RequestIdentity:
        email = f"{username.lower()}@{self.settings.domain}" if self.settings.domain else ""
        return RequestIdentity(
            username=username,
            name=username.capitalize(),
            email=email,
            provider=USERNAME_PROVIDER,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, response: Response, identity: RequestIdentity, totp_pending: bool = False) -> str:
        """Persist identity in a fresh session cookie; returns the cookie value."""
        record = SessionRecord(
            username=identity.username,
            name=identity.name,
            email=identity.email,
            provider=identity.provider,
            totp_pending=totp_pending,
            oauth_groups=identity.oauth_groups,
        )
        return self.sessions.create(response, record)

    def end_session(self, response: Response) -> None:
        self.sessions.delete(response)

    def session_identity(self, request: Request, response: Response) -> tuple[RequestIdentity | None, bool]:
        """Return (identity, totp_pending) for the request's session cookie."""
        record = self.sessions.read(request, response)
        if record is None:
            return None, False
        identity = RequestIdentity(
            username=record.username,
            name=record.name,
            email=record.email,
            provider=record.provider,
            oauth_groups=record.oauth_groups,
            is_oauth=record.provider != USERNAME_PROVIDER,
        )
        return identity, record.totp_pending

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def authorize(self, identity: RequestIdentity, policy: ResourcePolicy) -> Decision:
        if not self.evaluator.resource_allowed(identity, policy):
            logger.warning("User %r is not allowed to access this resource", identity.username)
            return Decision(allowed=False, reason="forbidden", identity=identity)
        if not self.evaluator.oauth_group_allowed(identity, policy):
            logger.warning("User %r is not in any required group", identity.username)
            return Decision(allowed=False, reason="group_denied", identity=identity)
        return Decision(allowed=True, reason="allowed", identity=identity)

    def authenticate(self, request: Request, response: Response, policy: ResourcePolicy) -> Decision:
        """Full forward-auth decision for one proxied request."""
        client_ip = get_client_ip(request, self._trusted_proxies)
        if not self.evaluator.check_ip(client_ip, policy.ip):
            return Decision(allowed=False, reason="ip_blocked")

        bypass, _ = self.evaluator.bypassed(get_forwarded_uri(request), policy.allowed_uri_pattern)
        if bypass:
            logger.debug("URI matches allowed pattern, skipping authentication")
            return Decision(allowed=True, reason="bypassed")

        identity, totp_pending = self.session_identity(request, response)
        if identity is not None and totp_pending:
            return Decision(allowed=False, reason="totp_pending", identity=identity)

        if identity is None:
            credentials = get_basic_auth(request)
            if credentials is None:
                return Decision(allowed=False, reason="unauthenticated")
            result = self.login(*credentials, client_ip=client_ip)
            if result.locked:
                return Decision(allowed=False, reason="locked", retry_after=result.retry_after)
            if not result.success:
                return Decision(allowed=False, reason="unauthenticated")
            identity = result.identity

        return self.authorize(identity, policy)

"""
auth/models.py -- Domain dataclasses for the forward-auth engine.

Pattern: Data class (pure data container, zero logic). Stores, the rate
limiter and the session manager do the work; these only own domain shape.

Layer rule: no imports from core/ or from other auth/ modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class IdentityKind(str, Enum):
    LOCAL = "local"
    DIRECTORY = "ldap"


@dataclass(frozen=True)
class User:
    """A statically configured local account. Immutable after load."""

    username: str
    password_hash: str  # bcrypt


@dataclass
class IdentitySearchResult:
    """Outcome of CredentialStore.search().

    identifier is the username for LOCAL identities and the resolved
    distinguished name for DIRECTORY identities. kind=None means "unknown
    user" without saying which backend was asked.
    """

    identifier: str = ""
    kind: IdentityKind | None = None

    @property
    def found(self) -> bool:
        return self.kind is not None


@dataclass
class LoginAttempt:
    """Failed-login bookkeeping for one identifier (username or client IP)."""

    failed_count: int = 0
    last_attempt_at: float = 0.0
    locked_until: float = 0.0  # epoch seconds, 0 = not locked


@dataclass
class SessionRecord:
    """Everything the signed session cookie carries.

    expires_at is an integer epoch. totp_pending marks a session whose
    primary credential succeeded but which still owes a second factor.
    oauth_groups is flattened to a comma string.
    """

    username: str
    name: str
    email: str
    provider: str
    expires_at: int = 0
    totp_pending: bool = False
    oauth_groups: str = ""


@dataclass
class OAuthPolicy:
    email_whitelist: str = ""
    required_groups: str = ""


@dataclass
class IPPolicy:
    allow: list[str] = field(default_factory=list)
    block: list[str] = field(default_factory=list)


@dataclass
class ResourcePolicy:
    """Per-resource access policy, already extracted by the caller.

    allowed_uri_pattern is a regular expression; matching URIs skip
    authentication. The whitelists are comma-separated exact-match lists.
    """

    allowed_uri_pattern: str = ""
    user_whitelist: str = ""
    oauth: OAuthPolicy = field(default_factory=OAuthPolicy)
    ip: IPPolicy = field(default_factory=IPPolicy)


@dataclass
class RequestIdentity:
    """The subject of an authorization decision.

    Built either from a live SessionRecord or from freshly verified
    credentials. is_oauth selects which whitelist applies.
    """

    username: str
    email: str = ""
    provider: str = ""
    oauth_groups: str = ""
    is_oauth: bool = False
    name: str = ""


@dataclass
class Decision:
    """Result of AuthEngine.authenticate() / authorize().

    reason is one of: ip_blocked, bypassed, allowed, unauthenticated, locked,
    totp_pending, forbidden, group_denied. retry_after is only set when
    reason == "locked".
    """

    allowed: bool
    reason: str
    identity: RequestIdentity | None = None
    retry_after: int = 0


@dataclass
class LoginResult:
    success: bool
    identity: RequestIdentity | None = None
    locked: bool = False
    retry_after: int = 0

"""
auth/credentials.py -- Username resolution and password verification.

Two backends, consulted in order:
  local  -- the static user list from configuration (bcrypt hashes).
  ldap   -- an optional LDAP directory; the identifier is the entry's DN.

Security:
  [C1] search() returns an empty result for an unknown user without saying
       which backend was asked, and verify() is a plain bool. Callers must
       not branch on why verification failed. The local path runs bcrypt
       against DUMMY_HASH when the user is missing so timing stays flat.

  A directory verification that succeeds but cannot restore the service
  account bind is reported as a failure (fail closed) and logged at ERROR:
  the connection was left bound as someone else.

Layer rule: no imports from core/ except for CredentialStore.from_settings().
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from auth.exceptions import DirectoryError, DirectoryRebindError
from auth.ldap import LDAPClient, LDAPConfig
from auth.models import IdentityKind, IdentitySearchResult, User
from auth.tokens import DUMMY_HASH, verify_password

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("portcullis.auth.credentials")


class CredentialStore:
    """Repository for the local user list plus an optional LDAP client.

    Usage:
        store = CredentialStore([User("alice", hash_password("secret"))])
        result = store.search("alice")
        ok = store.verify(result, "secret")
    """

    def __init__(self, users: Iterable[User] = (), ldap: LDAPClient | None = None) -> None:
        self._users: dict[str, User] = {u.username: u for u in users}
        self.ldap = ldap

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialStore":
        users = [User(username=name, password_hash=hashed) for name, hashed in settings.local_users()]
        ldap = LDAPClient(LDAPConfig.from_settings(settings)) if settings.ldap_configured else None
        return cls(users, ldap)

    def user_auth_configured(self) -> bool:
        """Return True if any username/password backend is available."""
        return bool(self._users) or self.ldap is not None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_local_user(self, username: str) -> User | None:
        """Look up a local user by exact username (case-sensitive)."""
        return self._users.get(username)

    def search(self, username: str) -> IdentitySearchResult:
        """Resolve username to a typed identity; empty result if unknown."""
        if self.get_local_user(username) is not None:
            logger.debug("Found local user %r", username)
            return IdentitySearchResult(identifier=username, kind=IdentityKind.LOCAL)

        if self.ldap is not None:
            try:
                dn = self.ldap.search(username)
            except DirectoryError as exc:
                logger.warning("LDAP lookup for %r failed: %s", username, exc)
                return IdentitySearchResult()
            logger.debug("Found LDAP user %r as %s", username, dn)
            return IdentitySearchResult(identifier=dn, kind=IdentityKind.DIRECTORY)

        return IdentitySearchResult()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def check_password(self, user: User | None, password: str) -> bool:
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password, DUMMY_HASH)
            return False
        return verify_password(password, user.password_hash)

    def verify(self, result: IdentitySearchResult, password: str) -> bool:
        """Return True only if password is valid for the resolved identity."""
        if result.kind is IdentityKind.LOCAL:
            return self.check_password(self.get_local_user(result.identifier), password)

        if result.kind is IdentityKind.DIRECTORY and self.ldap is not None:
            return self._verify_directory(result.identifier, password)

        logger.warning("Unknown identity kind %r for authentication", result.kind)
        return False

    def _verify_directory(self, dn: str, password: str) -> bool:
        try:
            with self.ldap.user_bind(dn, password) as bound:
                ok = bound
        except DirectoryRebindError:
            logger.error("Failed to re-bind LDAP service account after authenticating %s", dn, exc_info=True)
            return False
        except DirectoryError as exc:
            logger.warning("LDAP bind for %s failed: %s", dn, exc)
            return False

        if not ok:
            logger.warning("LDAP bind for %s rejected", dn)
            return False
        logger.debug("LDAP authentication for %s successful", dn)
        return True

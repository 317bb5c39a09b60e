"""
auth/ldap.py -- LDAP directory client (ldap3) for credential verification.

Bind protocol:
  1. search(username) resolves a username to exactly one distinguished name,
     using the service-account connection.
  2. user_bind(dn, password) binds as that DN with the supplied password.
  3. On every exit path of user_bind (success, wrong password, network error,
     exception in the caller's block) the connection is re-bound as the
     service account before anyone else can use it.

The connection's "current bind identity" is shared state. One lock
serialises every directory operation, and the re-bind in step 3 happens
while the lock is still held, so no caller ever sees a connection bound as
another user. If the re-bind fails the connection is discarded and
DirectoryRebindError is raised; the next operation reconnects from scratch.

Every network call is bounded by LDAPConfig.timeout (connect and receive).

Layer rule: no imports from core/ except for LDAPConfig.from_settings().
"""

from __future__ import annotations

import logging
import ssl
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ldap3 import SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from auth.exceptions import DirectoryError, DirectoryRebindError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("portcullis.auth.ldap")


@dataclass(frozen=True)
class LDAPConfig:
    address: str  # e.g. "ldaps://ldap.example.com:636"
    bind_dn: str
    bind_password: str
    base_dn: str
    search_filter: str = "(uid=%s)"
    insecure: bool = False  # skip TLS certificate validation
    timeout: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "LDAPConfig":
        return cls(
            address=settings.ldap_address,
            bind_dn=settings.ldap_bind_dn,
            bind_password=settings.ldap_bind_password,
            base_dn=settings.ldap_base_dn,
            search_filter=settings.ldap_search_filter,
            insecure=settings.ldap_insecure,
            timeout=settings.ldap_timeout,
        )


class LDAPClient:
    """Service-account LDAP connection with user-bind impersonation.

    Usage:
        client = LDAPClient(LDAPConfig(...))
        dn = client.search("alice")
        with client.user_bind(dn, "secret") as ok:
            ...
        client.close()

    connection_factory is for tests; it must return an unbound
    ldap3.Connection-like object configured with the service credentials.
    """

    def __init__(self, config: LDAPConfig, connection_factory: Callable[[], Connection] | None = None) -> None:
        self.config = config
        self._factory = connection_factory or self._default_connection
        self._conn: Connection | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection management (caller holds self._lock)
    # ------------------------------------------------------------------

    def _default_connection(self) -> Connection:
        tls = Tls(validate=ssl.CERT_NONE) if self.config.insecure else None
        server = Server(self.config.address, connect_timeout=self.config.timeout, tls=tls)
        return Connection(
            server,
            user=self.config.bind_dn,
            password=self.config.bind_password,
            receive_timeout=self.config.timeout,
            raise_exceptions=False,
        )

    def _connection(self) -> Connection:
        if self._conn is None:
            conn = self._factory()
            try:
                bound = conn.bind()
            except LDAPException as exc:
                raise DirectoryError(f"could not connect to {self.config.address}: {exc}") from exc
            if not bound:
                raise DirectoryError(f"service account bind rejected: {conn.result}")
            logger.info("Connected to LDAP server %s as %s", self.config.address, self.config.bind_dn)
            self._conn = conn
        return self._conn

    def _discard(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.unbind()
        except LDAPException:
            logger.debug("Error while dropping LDAP connection", exc_info=True)

    def _bind_as(self, conn: Connection, user: str, password: str) -> bool:
        try:
            return bool(conn.rebind(user=user, password=password))
        except LDAPException as exc:
            logger.debug("LDAP bind as %s failed: %s", user, exc)
            return False

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open and bind the service connection now instead of on first use."""
        with self._lock:
            self._connection()

    def search(self, username: str) -> str:
        """Return the DN of the single entry matching username.

        Raises DirectoryError on transport failure or when zero or several
        entries match.
        """
        search_filter = self.config.search_filter.replace("%s", escape_filter_chars(username))
        with self._lock:
            conn = self._connection()
            try:
                conn.search(
                    search_base=self.config.base_dn,
                    search_filter=search_filter,
                    search_scope=SUBTREE,
                    attributes=[],
                )
            except LDAPException as exc:
                self._discard()
                raise DirectoryError(f"search for {username!r} failed: {exc}") from exc
            entries = [e for e in (conn.response or []) if e.get("type") == "searchResEntry"]

        if len(entries) != 1:
            raise DirectoryError(f"expected exactly one entry for {username!r}, found {len(entries)}")
        return entries[0]["dn"]

    @contextmanager
    def user_bind(self, dn: str, password: str) -> Iterator[bool]:
        """Bind as dn for the duration of the block; yield whether the bind succeeded.

        The service account is restored on exit whatever happened, including
        after a failed bind. Raises DirectoryRebindError if it cannot be.
        """
        with self._lock:
            conn = self._connection()
            try:
                # An empty password is an unauthenticated bind, which most
                # servers accept. Never let that count as a login.
                yield bool(password) and self._bind_as(conn, dn, password)
            finally:
                if not self._bind_as(conn, self.config.bind_dn, self.config.bind_password):
                    self._discard()
                    raise DirectoryRebindError(f"could not re-bind as {self.config.bind_dn} after binding as {dn}")

    def close(self) -> None:
        with self._lock:
            self._discard()

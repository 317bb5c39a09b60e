"""
tests/helpers.py -- Fakes and constants shared by the test modules.

FakeClock replaces time.time for the rate limiter and session manager.
FakeConnection replaces ldap3.Connection; it tracks which DN it is bound as
so tests can assert the service account is always restored.
"""

from __future__ import annotations

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
ALICE_PASSWORD = "correct horse battery staple"

SERVICE_DN = "cn=svc,dc=example,dc=com"
SERVICE_PASSWORD = "svc-password"
BOB_DN = "uid=bob,ou=people,dc=example,dc=com"
BOB_PASSWORD = "bob-password"


class FakeClock:
    """Callable time source. Starts at a fixed epoch and only moves when told."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    """In-memory stand-in for ldap3.Connection.

    accounts maps DN -> password; directory maps search filter -> list of DNs.
    """

    def __init__(self, accounts: dict[str, str], directory: dict[str, list[str]]) -> None:
        self.accounts = accounts
        self.directory = directory
        self.bound_as: str | None = None
        self.result: dict = {}
        self.response: list[dict] = []
        self.rebinds: list[str | None] = []
        self.fail_rebind_for: set[str] = set()
        self.raise_on_rebind: Exception | None = None
        self.unbound = False
        self.last_search: tuple[str, str] | None = None

    def bind(self) -> bool:
        self.bound_as = SERVICE_DN
        return True

    def rebind(self, user: str | None = None, password: str | None = None) -> bool:
        self.rebinds.append(user)
        if self.raise_on_rebind is not None and user != SERVICE_DN:
            raise self.raise_on_rebind
        if user in self.fail_rebind_for or self.accounts.get(user) != password:
            self.bound_as = None
            return False
        self.bound_as = user
        return True

    def search(self, search_base: str, search_filter: str, search_scope=None, attributes=None) -> bool:
        self.last_search = (search_base, search_filter)
        self.response = [{"type": "searchResEntry", "dn": dn} for dn in self.directory.get(search_filter, [])]
        return bool(self.response)

    def unbind(self) -> bool:
        self.unbound = True
        self.bound_as = None
        return True

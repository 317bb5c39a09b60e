"""
auth/tokens.py -- Password hashing and session-cookie token codec.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in CredentialStore so response time does
       not reveal whether a username exists [C1].

  Session tokens: python-jose. The claim set is signed as an HS256 JWS with
       SECRET_KEY. If an encryption secret is configured, the JWS is wrapped
       in a JWE (alg "dir", enc "A256GCM") keyed with SHA-256(secret), so the
       browser can neither read nor alter the session.

       No "exp" claim is used: expiry lives in the application-level "expiry"
       field so an expired session and a forged session take different log
       paths (warning vs. clear-and-forget).

  Decoding returns the raw claim dict or raises InvalidSessionError. Schema
  checks belong to the session manager, not here.

Layer rule: no imports from core/. Secrets are handed in by the caller.
"""

from __future__ import annotations

import hashlib
import json

import bcrypt
from jose import jwe, jws
from jose.exceptions import JOSEError

from auth.exceptions import InvalidSessionError, SessionError

_ALGORITHM = "HS256"
_JWE_ALGORITHM = "dir"
_JWE_ENCRYPTION = "A256GCM"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed hash is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
DUMMY_HASH: str = hash_password("portcullis_timing_dummy")


# ---------------------------------------------------------------------------
# Session token codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Sign (and optionally encrypt) a claim dict into an opaque cookie value.

    Usage:
        codec = TokenCodec(secret_key, encryption_secret="")
        token = codec.encode({"username": "alice"})
        claims = codec.decode(token)
    """

    def __init__(self, secret_key: str, encryption_secret: str = "") -> None:
        self._secret_key = secret_key
        self._encryption_key: bytes | None = (
            hashlib.sha256(encryption_secret.encode("utf-8")).digest() if encryption_secret else None
        )

    def encode(self, claims: dict) -> str:
        try:
            token = jws.sign(claims, self._secret_key, algorithm=_ALGORITHM)
            if self._encryption_key is not None:
                token = jwe.encrypt(
                    token,
                    self._encryption_key,
                    algorithm=_JWE_ALGORITHM,
                    encryption=_JWE_ENCRYPTION,
                ).decode("ascii")
        except JOSEError as exc:
            raise SessionError(f"could not encode session token: {exc}") from exc
        return token

    def decode(self, token: str) -> dict:
        if not token:
            raise InvalidSessionError("no session token")
        try:
            if self._encryption_key is not None:
                token = jwe.decrypt(token, self._encryption_key).decode("ascii")
            payload = jws.verify(token, self._secret_key, algorithms=[_ALGORITHM])
            claims = json.loads(payload)
        except (JOSEError, UnicodeDecodeError, ValueError) as exc:
            raise InvalidSessionError(f"could not decode session token: {exc}") from exc
        if not isinstance(claims, dict):
            raise InvalidSessionError("session token payload is not an object")
        return claims

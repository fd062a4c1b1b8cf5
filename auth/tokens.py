"""
auth/tokens.py -- Password hashing and API token issuance.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Bcrypt is the right
       choice for low-entropy secrets because its cost factor makes brute-force
       expensive. _DUMMY_HASH enables timing equalization in the database auth
       provider so response time does not reveal whether a username exists.

  API tokens: secrets.token_hex(32) gives 256 bits of entropy in a fixed
       64-char string. Tokens are opaque -- they carry no claims; the ident
       and expiry live server-side in the apitoken table, so deleting the row
       revokes the token immediately.

Layer rule: no imports from api/, web/ or vplan/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import bcrypt

from core.database import utcnow

if TYPE_CHECKING:
    from auth.models import TokenRecord
    from auth.store import TokenStore

logger = logging.getLogger("vplan.auth")

TOKEN_BYTES = 32

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


# bcrypt only looks at the first 72 bytes of a password.
PASSWORD_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for passwords longer than PASSWORD_MAX_BYTES once
    UTF-8 encoded; they are refused rather than truncated.
    """
    raw = plain.encode("utf-8")
    if len(raw) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Over-long passwords never match; hash_password refuses to store them.
    """
    raw = plain.encode("utf-8")
    if len(raw) > PASSWORD_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        # malformed hash in the store
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("vplan_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt verification against the dummy hash and discard the result.

    Call this on every failure path that would otherwise skip bcrypt (unknown
    username) so that path costs the same as a wrong password.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# API tokens
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new opaque API token: 64 hex chars, 256 bits of entropy."""
    return secrets.token_hex(TOKEN_BYTES)


class TokenManager:
    """Issues, renews and validates API tokens on top of a TokenStore.

    Usage:
        manager = TokenManager(TokenStore(engine), ttl_seconds=7 * 24 * 3600)
        token, expire = manager.set(ident)   # login with session=0
        ident = manager.check(token)         # every bearer-authenticated request
        manager.delete(ident)                # revoke

    Every call that reaches the store may raise StorageError.
    """

    def __init__(self, store: TokenStore, ttl_seconds: int) -> None:
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)

    def set(self, ident: str) -> tuple[str, datetime]:
        """Mint a new token for ident, replacing any previous one.

        The store upsert keeps exactly one record per ident, so a renewal
        invalidates the token handed out by the previous login.
        """
        token = generate_token()
        expire = (utcnow() + self.ttl).replace(microsecond=0)
        self.store.set_user_api_token(ident, token, expire)
        logger.debug("Issued API token for ident %s (expires %s)", ident[:12], expire.isoformat())
        return token, expire

    def get(self, ident: str) -> TokenRecord | None:
        """Return ident's token record if one exists and has not expired."""
        record = self.store.get_user_api_token(ident)
        if record is None or record.expire <= utcnow():
            return None
        return record

    def check(self, token: str) -> str | None:
        """Return the ident owning token, or None if unknown or expired."""
        if not token:
            return None
        found = self.store.get_api_token(token)
        if found is None:
            return None
        ident, expire = found
        if expire <= utcnow():
            return None
        return ident

    def delete(self, ident: str) -> bool:
        return self.store.delete_user_api_token(ident)

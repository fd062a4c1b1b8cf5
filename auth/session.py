"""
auth/session.py -- Signed cookie sessions.

The session cookie holds a JWT (python-jose, HS256, signed with SECRET_KEY)
whose claims are the ident, a "typ" marker and the expiry. Nothing is stored
server-side: a session lives exactly as long as its cookie and its exp claim.

Cookie flags:
  httponly=True     JS cannot read the cookie (XSS mitigation).
  samesite="lax"    not sent on cross-site POST -- CSRF mitigation.
  secure            only over HTTPS when SECURE_COOKIES=true.
  max_age           matches the exp claim so both expire together.

Logout overwrites the cookie with an expiry in the past. The browser drops
it; a copied cookie value stays valid until exp, which is the accepted cost
of stateless sessions.
"""

from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt

from core.config import Settings
from core.database import utcnow

_ALGORITHM = "HS256"
_SESSION_TYPE = "session"


def session_max_age(settings: Settings, mode: int) -> int:
    """Map the login request's session selector to a cookie max-age in seconds.

    mode 1 -> default session length, mode > 1 -> "remember me" length.
    """
    return settings.remember_max_age if mode > 1 else settings.session_max_age


def encode_session(settings: Settings, ident: str, max_age: int) -> str:
    expire = utcnow() + timedelta(seconds=max_age)
    payload = {"sub": ident, "typ": _SESSION_TYPE, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_session(settings: Settings, value: str | None) -> str | None:
    """Return the ident from a session cookie value, or None if invalid or expired."""
    if not value:
        return None
    try:
        payload = jwt.decode(value, settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _SESSION_TYPE:
        return None
    ident = payload.get("sub")
    return ident if isinstance(ident, str) and ident else None


def set_session_cookie(response, settings: Settings, ident: str, max_age: int) -> None:
    """Write a fresh session cookie for ident onto response."""
    response.set_cookie(
        settings.session_cookie_name,
        value=encode_session(settings, ident, max_age),
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )


def clear_session_cookie(response, settings: Settings) -> None:
    """Overwrite the session cookie with an already-expired one."""
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )

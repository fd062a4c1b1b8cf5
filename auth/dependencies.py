"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two auth methods are checked in priority order:
  1. Session cookie (Settings.session_cookie_name) -- set by a login with
     session > 0, used by the browser frontend.
  2. Authorization: Bearer <token> header -- API clients holding a token from
     a login with session = 0.

try_get_current_ident() is the soft variant (returns None on failure).
get_current_ident() wraps it and raises HTTP 401 if unauthenticated.

A storage fault while looking up a bearer token is NOT an auth failure: it
propagates as StorageError and api/main.py turns it into a 500, so clients
can tell "your token is bad" from "the server is broken".

Layer rule: no imports from web/ or vplan/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.session import decode_session
from auth.tokens import TokenManager
from core.config import Settings


def bearer_token(request: Request) -> str:
    """Return the raw token from an Authorization: Bearer header, or ""."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return value.strip()


def try_get_current_ident(request: Request) -> str | None:
    """Authenticate the request via session cookie, then bearer token.

    Returns the ident on success, None when neither method validates.
    Raises StorageError if the token lookup itself fails.
    """
    settings: Settings = request.app.state.settings

    # 1. Session cookie (browser frontend)
    ident = decode_session(settings, request.cookies.get(settings.session_cookie_name))
    if ident:
        return ident

    # 2. Authorization: Bearer header (API clients)
    token = bearer_token(request)
    if token:
        token_manager: TokenManager = request.app.state.token_manager
        return token_manager.check(token)

    return None


def get_current_ident(request: Request) -> str:
    """Require authentication. Raises HTTP 401 (blank message) if unauthenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ident: str = Depends(get_current_ident)): ...
    """
    ident = try_get_current_ident(request)
    if ident is None:
        raise HTTPException(status_code=401, detail={"code": 401, "message": ""})
    return ident

"""
api/routes/auth.py -- Login and logout endpoints.

Routes:
  POST /api/authenticate/{username}  -- validate credential; issue token or session cookie
  POST /api/logout                   -- expire the session cookie; 200

Login modes (body.session):
  0   bearer token: response {ident, ctx, token, expire}
  1   cookie session, default max-age: response {ident, ctx} + Set-Cookie
  >1  cookie session, "remember me" max-age

Security:
  Rate limited per client address in the "authenticate" and "logout" buckets.
  401 responses carry a blank message; unknown user and wrong password are
  indistinguishable.
  Cache-Control: no-store on login responses -- they carry credentials.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse
from jose import JWTError

from api.limiter import rate_bucket
from api.models import AuthRequest, AuthResponseModel, AuthTokenResponse
from auth.dependencies import bearer_token
from auth.providers import AuthProvider
from auth.session import clear_session_cookie, session_max_age, set_session_cookie
from auth.tokens import TokenManager
from core.config import Settings
from core.errors import BadRequest, StorageError, Unauthorized

logger = logging.getLogger("vplan.api.auth")

# Auth policy:
# - POST /api/authenticate/{username}: public -- this is the login endpoint
# - POST /api/logout:                  public -- clearing a cookie needs no prior auth
router = APIRouter()


@router.post("/authenticate/{username}", dependencies=[rate_bucket("authenticate", "rate_limit_authenticate")])
def authenticate(request: Request, username: str, body: Optional[AuthRequest] = Body(default=None)) -> JSONResponse:
    """Validate username/password against the configured provider.

    On success either mints an API token (session = 0) or sets the signed
    session cookie (session > 0). A token login replaces any token the same
    identity held before.
    """
    if not username.strip():
        raise BadRequest()
    if body is None:
        raise BadRequest("missing request body")
    if not body.password:
        raise BadRequest()

    provider: AuthProvider = request.app.state.auth_provider
    try:
        auth = provider.authenticate(username, body.group, body.password)
    except Unauthorized:
        logger.info("Failed login for %r via %s provider", username, provider.name)
        raise HTTPException(status_code=401, detail={"code": 401, "message": ""}) from None

    if body.session > 0:
        settings: Settings = request.app.state.settings
        resp = JSONResponse(content=AuthResponseModel(ident=auth.ident, ctx=auth.ctx).model_dump(mode="json"))
        try:
            set_session_cookie(resp, settings, auth.ident, session_max_age(settings, body.session))
        except (JWTError, TypeError, ValueError) as exc:
            logger.exception("Could not save session for ident %s", auth.ident[:12])
            raise HTTPException(status_code=500, detail={"code": 500, "message": str(exc)}) from exc
    else:
        token_manager: TokenManager = request.app.state.token_manager
        token, expire = token_manager.set(auth.ident)
        resp = JSONResponse(
            content=AuthTokenResponse(ident=auth.ident, ctx=auth.ctx, token=token, expire=expire).model_dump(mode="json")
        )

    logger.info("Login for %r (ident %s, session=%d)", username, auth.ident[:12], body.session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout", dependencies=[rate_bucket("logout", "rate_limit_logout")])
def logout(request: Request) -> JSONResponse:
    """Expire the session cookie. Always 200, even without a session.

    A live bearer token sent with the request is revoked as well.
    """
    token = bearer_token(request)
    if token:
        token_manager: TokenManager = request.app.state.token_manager
        try:
            ident = token_manager.check(token)
            if ident:
                token_manager.delete(ident)
        except StorageError:
            logger.exception("Token revocation failed during logout")

    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp, request.app.state.settings)
    return resp

"""
auth/providers.py -- Pluggable credential validation.

Every provider implements one method:

    authenticate(username, group, password) -> AuthResponse

and raises core.errors.Unauthorized on any failure. Unknown user, wrong
password, wrong group, disabled account and backend errors all collapse into
the same exception so callers cannot leak which one happened.

Providers:
  DebugAuthProvider     fixed in-memory credential (test/passwd). DEBUG only.
  DatabaseAuthProvider  bcrypt hashes in the local users table.
  OIDCAuthProvider      external identity provider, resource-owner password
                        grant via authlib, claims from the userinfo endpoint.

create_auth_provider() picks one from Settings.auth_provider.

Layer rule: no imports from api/, web/ or vplan/.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session
from sqlalchemy.engine import Engine

from auth.models import AuthResponse
from auth.store import CredentialStore
from auth.tokens import burn_password_check, verify_password
from core.config import Settings
from core.errors import StorageError, Unauthorized

logger = logging.getLogger("vplan.auth")


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class AuthProvider(ABC):
    """Base class for credential validators."""

    name: str = ""

    @abstractmethod
    def authenticate(self, username: str, group: str, password: str) -> AuthResponse:
        """Validate the credential and return the caller's identity.

        Raises Unauthorized when the credential does not validate.
        """

    def close(self) -> None:
        pass


class DebugAuthProvider(AuthProvider):
    """Accepts exactly the credentials in its static map. For tests and local dev.

    ident is sha256(username + password) as lowercase hex; ctx is empty and
    group is ignored.
    """

    name = "debug"

    def __init__(self, credentials: dict[str, str] | None = None) -> None:
        self._credentials = credentials if credentials is not None else {"test": "passwd"}

    def authenticate(self, username: str, group: str, password: str) -> AuthResponse:
        expected = self._credentials.get(username)
        if expected is None or expected != password:
            raise Unauthorized()
        return AuthResponse(ident=_sha256_hex(username + password))


class DatabaseAuthProvider(AuthProvider):
    """Validates against bcrypt hashes in the users table.

    Always runs bcrypt whether or not the user exists, so response time does
    not reveal valid usernames:
      - unknown username: bcrypt runs against the dummy hash
      - wrong password / group / inactive: bcrypt runs against the real hash

    ident is sha256(username) -- stable across password changes.
    ctx is {"username": ..., "group": ...}.
    """

    name = "database"

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def authenticate(self, username: str, group: str, password: str) -> AuthResponse:
        try:
            credential = self.store.get_by_username(username)
        except StorageError:
            logger.exception("Credential lookup failed for %r", username)
            burn_password_check(password)
            raise Unauthorized() from None

        if credential is None:
            burn_password_check(password)
            raise Unauthorized()
        if not verify_password(password, credential.hashed_password):
            raise Unauthorized()
        if not credential.is_active:
            raise Unauthorized()
        if group and group != credential.group:
            raise Unauthorized()

        return AuthResponse(
            ident=_sha256_hex(credential.username),
            ctx={"username": credential.username, "group": credential.group},
        )


class OIDCAuthProvider(AuthProvider):
    """Validates credentials against an external OAuth2/OIDC identity provider.

    Flow per login:
      1. POST the username/password to the token endpoint (password grant).
      2. GET the userinfo endpoint with the returned access token.

    ident is the provider's "sub" claim. ctx is the full userinfo claim set.
    A non-empty group must be listed in the "groups" claim.
    """

    name = "oidc"

    def __init__(
        self,
        token_url: str,
        userinfo_url: str,
        client_id: str,
        client_secret: str = "",
        scope: str = "openid profile email",
        timeout: float = 10.0,
    ) -> None:
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.timeout = timeout

    def _session(self) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret or None,
            scope=self.scope,
        )

    def authenticate(self, username: str, group: str, password: str) -> AuthResponse:
        try:
            with self._session() as client:
                client.fetch_token(
                    self.token_url,
                    grant_type="password",
                    username=username,
                    password=password,
                    timeout=self.timeout,
                )
                resp = client.get(self.userinfo_url, timeout=self.timeout)
                resp.raise_for_status()
                claims = resp.json()
        except (AuthlibBaseError, requests.RequestException, ValueError) as exc:
            logger.info("Identity provider rejected login for %r: %s", username, exc)
            raise Unauthorized() from None

        subject = claims.get("sub") if isinstance(claims, dict) else None
        if not subject:
            logger.warning("Identity provider returned userinfo without a sub claim")
            raise Unauthorized()
        if group and group not in (claims.get("groups") or []):
            raise Unauthorized()

        return AuthResponse(ident=str(subject), ctx=claims)


def create_auth_provider(settings: Settings, engine: Engine) -> AuthProvider:
    """Build the provider selected by settings.auth_provider."""
    if settings.auth_provider == "debug":
        logger.warning("Debug auth provider active -- test/passwd is a valid login")
        return DebugAuthProvider()
    if settings.auth_provider == "oidc":
        return OIDCAuthProvider(
            token_url=settings.oidc_token_url,
            userinfo_url=settings.oidc_userinfo_url,
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            scope=settings.oidc_scope,
        )
    return DatabaseAuthProvider(CredentialStore(engine))

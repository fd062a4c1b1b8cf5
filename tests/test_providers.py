"""Unit tests for auth/providers.py -- credential validation.

Covers:
- DebugAuthProvider: fixed test/passwd credential, ident = sha256(username + password)
- DatabaseAuthProvider: bcrypt check, group scoping, disabled accounts,
  unknown users and storage faults all collapse into Unauthorized
- OIDCAuthProvider: password grant + userinfo via a mocked OAuth2Session
- create_auth_provider() selection from Settings
"""

import hashlib
from unittest.mock import MagicMock, patch

import pytest
import requests
from authlib.integrations.base_client.errors import OAuthError

from auth.models import Credential
from auth.providers import DatabaseAuthProvider, DebugAuthProvider, OIDCAuthProvider, create_auth_provider
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import Settings
from core.errors import StorageError, Unauthorized

_KEY = "k" * 32


def _sha(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class TestDebugProvider:
    def test_accepts_test_passwd(self):
        resp = DebugAuthProvider().authenticate("test", "", "passwd")
        assert resp.ident == _sha("testpasswd")
        assert resp.ctx == {}

    def test_group_is_ignored(self):
        assert DebugAuthProvider().authenticate("test", "anything", "passwd").ident == _sha("testpasswd")

    @pytest.mark.parametrize("username,password", [("test", "wrong"), ("other", "passwd"), ("", "")])
    def test_rejects_everything_else(self, username, password):
        with pytest.raises(Unauthorized):
            DebugAuthProvider().authenticate(username, "", password)


@pytest.fixture
def cred_store(engine):
    store = CredentialStore(engine)
    store.create_user(Credential(username="mueller", hashed_password=hash_password("geheim"), group="teachers"))
    store.create_user(
        Credential(username="gone", hashed_password=hash_password("geheim"), group="teachers", is_active=False)
    )
    return store


class TestDatabaseProvider:
    def test_valid_credential(self, cred_store):
        resp = DatabaseAuthProvider(cred_store).authenticate("mueller", "", "geheim")
        assert resp.ident == _sha("mueller")
        assert resp.ctx == {"username": "mueller", "group": "teachers"}

    def test_matching_group(self, cred_store):
        assert DatabaseAuthProvider(cred_store).authenticate("mueller", "teachers", "geheim").ident == _sha("mueller")

    @pytest.mark.parametrize(
        "username,group,password",
        [
            ("mueller", "", "wrong"),
            ("nobody", "", "geheim"),
            ("mueller", "students", "geheim"),
            ("gone", "", "geheim"),
        ],
        ids=["wrong-password", "unknown-user", "wrong-group", "inactive"],
    )
    def test_failures_are_indistinguishable(self, cred_store, username, group, password):
        with pytest.raises(Unauthorized) as exc_info:
            DatabaseAuthProvider(cred_store).authenticate(username, group, password)
        assert str(exc_info.value) == ""

    def test_unknown_user_still_runs_bcrypt(self, cred_store):
        with patch("auth.providers.burn_password_check") as burn:
            with pytest.raises(Unauthorized):
                DatabaseAuthProvider(cred_store).authenticate("nobody", "", "geheim")
        burn.assert_called_once_with("geheim")

    def test_storage_fault_is_unauthorized(self):
        store = MagicMock()
        store.get_by_username.side_effect = StorageError("db down")
        with pytest.raises(Unauthorized):
            DatabaseAuthProvider(store).authenticate("mueller", "", "geheim")

    def test_password_change_keeps_ident(self, cred_store):
        provider = DatabaseAuthProvider(cred_store)
        before = provider.authenticate("mueller", "", "geheim").ident
        cred_store.set_password("mueller", hash_password("neu"))
        assert provider.authenticate("mueller", "", "neu").ident == before


def _oidc_provider(session: MagicMock) -> OIDCAuthProvider:
    provider = OIDCAuthProvider(
        token_url="https://idp.example/token",
        userinfo_url="https://idp.example/userinfo",
        client_id="vplan",
    )
    session.__enter__.return_value = session
    provider._session = MagicMock(return_value=session)
    return provider


class TestOIDCProvider:
    def test_password_grant_and_userinfo(self):
        session = MagicMock()
        session.get.return_value.json.return_value = {"sub": "u-42", "groups": ["teachers"], "name": "Frau Mueller"}
        provider = _oidc_provider(session)

        resp = provider.authenticate("mueller", "teachers", "geheim")

        assert resp.ident == "u-42"
        assert resp.ctx["name"] == "Frau Mueller"
        session.fetch_token.assert_called_once()
        _, kwargs = session.fetch_token.call_args
        assert kwargs["grant_type"] == "password"
        assert kwargs["username"] == "mueller"
        assert kwargs["password"] == "geheim"
        session.get.assert_called_once_with("https://idp.example/userinfo", timeout=provider.timeout)

    def test_rejected_grant_is_unauthorized(self):
        session = MagicMock()
        session.fetch_token.side_effect = OAuthError(error="invalid_grant")
        with pytest.raises(Unauthorized):
            _oidc_provider(session).authenticate("mueller", "", "wrong")

    def test_network_error_is_unauthorized(self):
        session = MagicMock()
        session.fetch_token.side_effect = requests.ConnectionError("refused")
        with pytest.raises(Unauthorized):
            _oidc_provider(session).authenticate("mueller", "", "geheim")

    def test_missing_sub_is_unauthorized(self):
        session = MagicMock()
        session.get.return_value.json.return_value = {"name": "no subject"}
        with pytest.raises(Unauthorized):
            _oidc_provider(session).authenticate("mueller", "", "geheim")

    def test_group_not_in_claims_is_unauthorized(self):
        session = MagicMock()
        session.get.return_value.json.return_value = {"sub": "u-42", "groups": ["students"]}
        with pytest.raises(Unauthorized):
            _oidc_provider(session).authenticate("mueller", "teachers", "geheim")


class TestProviderSelection:
    def test_debug(self, engine):
        settings = Settings(debug=True, secret_key=_KEY, auth_provider="debug")
        assert isinstance(create_auth_provider(settings, engine), DebugAuthProvider)

    def test_database(self, engine):
        settings = Settings(debug=False, secret_key=_KEY, auth_provider="database")
        assert isinstance(create_auth_provider(settings, engine), DatabaseAuthProvider)

    def test_oidc(self, engine):
        settings = Settings(
            secret_key=_KEY,
            auth_provider="oidc",
            oidc_token_url="https://idp.example/token",
            oidc_userinfo_url="https://idp.example/userinfo",
            oidc_client_id="vplan",
        )
        provider = create_auth_provider(settings, engine)
        assert isinstance(provider, OIDCAuthProvider)
        assert provider.client_id == "vplan"

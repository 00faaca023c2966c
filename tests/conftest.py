"""
Shared fixtures: auth settings, an in-process stand-in for the MSAL client,
and environment isolation for the config loader.
"""

import pytest

from botprov.config.loader import AuthSettings
from botprov.core.session_store import InMemorySessionStore
from botprov.core.token_cache import TokenCache

GRAPH = "https://graph.microsoft.com/Application.ReadWrite.All"
TDP = "https://dev.teams.microsoft.com/AppDefinitions.ReadWrite"

_ENV_KEYS = (
    "CLIENT_ID", "CLIENT_SECRET", "REDIRECT_URI", "ADMIN_CONSENT_URI",
    "ENDPOINT_BASE", "AUTHORITY_TENANT", "SESSION_TTL_SECONDS", "PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for k in _ENV_KEYS:
        monkeypatch.delenv(k, raising=False)


class FakeMsalApp:
    """Mimics the slice of msal.ConfidentialClientApplication the token cache uses."""

    def __init__(self):
        self.codes = {}         # code -> (oid, tid, username)
        self.silent = {}        # scope -> result dict | None | Exception
        self.silent_calls = []  # (scope, home_account_id)
        self._accounts = []

    def add_user(self, code, oid, tid, username):
        self.codes[code] = (oid, tid, username)

    def get_authorization_request_url(self, scopes, state=None, redirect_uri=None, **kwargs):
        return f"https://login.example/authorize?scope={'+'.join(scopes)}&state={state}&redirect_uri={redirect_uri}"

    def acquire_token_by_authorization_code(self, code, scopes, redirect_uri=None, **kwargs):
        if code not in self.codes:
            return {"error": "invalid_grant", "error_description": "AADSTS70008: The provided authorization code has expired."}
        oid, tid, upn = self.codes[code]
        acct = {"home_account_id": f"{oid}.{tid}", "local_account_id": oid, "realm": tid, "username": upn}
        if acct not in self._accounts:
            self._accounts.append(acct)
        return {"access_token": "at-signin", "id_token_claims": {"oid": oid, "tid": tid, "preferred_username": upn}}

    def get_accounts(self, username=None):
        return list(self._accounts)

    def remove_account(self, account):
        self._accounts = [a for a in self._accounts if a["home_account_id"] != account["home_account_id"]]

    def acquire_token_silent_with_error(self, scopes, account, **kwargs):
        scope = scopes[0]
        self.silent_calls.append((scope, account["home_account_id"]))
        r = self.silent.get(scope, {"access_token": f"tok:{scope}:{account['home_account_id']}"})
        if isinstance(r, Exception):
            raise r
        return r


@pytest.fixture
def settings():
    return AuthSettings(
        client_id="client-123",
        client_secret="shh",
        redirect_uri="https://tunnel.example/redirect.html",
        admin_consent_redirect_uri="https://tunnel.example/admin-consent-callback.html",
        graph_scopes=[GRAPH],
        tdp_scopes=[TDP],
    )


@pytest.fixture
def msal_app():
    app = FakeMsalApp()
    app.add_user("code-a", "oid-a", "tenant-a", "alice@contoso.com")
    app.add_user("code-b", "oid-b", "tenant-b", "bob@fabrikam.com")
    return app


@pytest.fixture
def token_cache(settings, msal_app):
    return TokenCache(settings, app=msal_app)


@pytest.fixture
def session_store():
    return InMemorySessionStore(ttl_seconds=3600)

"""
Delegated token cache backed by one MSAL confidential client.

Sign-in asks only for the minimal scope; every resource-specific token is
obtained afterwards with the cached refresh token (silent acquisition).
One access token is valid for one resource, so each silent call carries
exactly one scope.
"""
from __future__ import annotations
import logging
import threading
from typing import Dict, Optional

import msal
import requests

from botprov.config.loader import AuthSettings
from botprov.core.auth import InvalidCode, TransientOrUnknown
from botprov.core.auth_helpers import classify_msal_error, scope_resource
from botprov.core.models import Account

log = logging.getLogger(__name__)


class TokenCache:
    def __init__(self, settings: AuthSettings, timeout: float = 30.0, app=None):
        self.settings = settings
        self._app = app or msal.ConfidentialClientApplication(
            client_id=settings.client_id,
            client_credential=settings.client_secret,
            authority=settings.authority,
            token_cache=msal.SerializableTokenCache(),
            timeout=timeout,
        )
        self._lock = threading.Lock()
        self._authenticated: Dict[str, int] = {}  # home_account_id -> live sessions

    # ---------- interactive leg ----------
    def auth_url(self, state: str) -> str:
        return self._app.get_authorization_request_url(
            self.settings.sign_in_scopes,
            state=state,
            redirect_uri=self.settings.redirect_uri,
        )

    def redeem_code(self, code: str) -> Account:
        if not code:
            raise InvalidCode("Missing authorization code.")
        try:
            res = self._app.acquire_token_by_authorization_code(
                code,
                scopes=self.settings.sign_in_scopes,
                redirect_uri=self.settings.redirect_uri,
            )
        except requests.exceptions.RequestException as ex:
            raise InvalidCode(f"Code exchange failed: {ex}") from ex

        if not res or "access_token" not in res:
            err = InvalidCode((res or {}).get("error_description") or "Code exchange failed.")
            err.error_code = (res or {}).get("error")
            raise err

        claims = res.get("id_token_claims") or {}
        oid, tid = claims.get("oid", ""), claims.get("tid", "")
        entry = self._find_entry(oid, tid)
        if entry is None:
            raise InvalidCode("Authorization server returned no account.")

        account = Account(
            home_account_id=entry["home_account_id"],
            tenant_id=tid or entry.get("realm", ""),
            username=claims.get("preferred_username") or entry.get("username", ""),
        )
        with self._lock:
            key = account.home_account_id
            self._authenticated[key] = self._authenticated.get(key, 0) + 1
        log.info("Signed in %s (tenant %s)", account.username, account.tenant_id)
        return account

    def _find_entry(self, oid: str, tid: str) -> Optional[dict]:
        for a in self._app.get_accounts():
            if a.get("local_account_id") == oid and (not tid or a.get("realm") == tid):
                return a
        return None

    def _msal_account(self, account: Account) -> Optional[dict]:
        for a in self._app.get_accounts():
            if a.get("home_account_id") == account.home_account_id:
                return a
        return None

    def is_known(self, account: Account) -> bool:
        with self._lock:
            return account.home_account_id in self._authenticated

    def release(self, account: Account) -> None:
        """Drop one session's hold on `account`; the last one evicts it from MSAL."""
        with self._lock:
            left = self._authenticated.get(account.home_account_id, 0) - 1
            if left > 0:
                self._authenticated[account.home_account_id] = left
                return
            self._authenticated.pop(account.home_account_id, None)
            entry = self._msal_account(account)
            if entry is not None:
                self._app.remove_account(entry)
        log.info("Evicted %s from the token cache", account.username)

    # ---------- silent leg ----------
    def acquire_silent(self, account: Account, scope: str) -> str:
        if not isinstance(scope, str) or not scope_resource(scope):
            raise ValueError(f"Expected one resource-qualified scope, got {scope!r}")

        if not self.is_known(account):
            raise TransientOrUnknown("Account was not authenticated by this process.")
        entry = self._msal_account(account)
        if entry is None:
            raise TransientOrUnknown("Account missing from token cache.")

        try:
            res = self._app.acquire_token_silent_with_error([scope], account=entry)
        except requests.exceptions.RequestException as ex:
            # timeouts land here too
            err = TransientOrUnknown(f"{scope}: {ex}")
            err.error_code = "network_error"
            raise err from ex

        if res and "access_token" in res:
            return res["access_token"]
        raise classify_msal_error(res, scope)

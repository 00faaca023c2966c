# src/botprov/app/orchestrator.py
from __future__ import annotations
import logging
from typing import Callable, Optional
from urllib.parse import urlparse

from botprov.app.pipeline import PipelineDeps, PipelineState, run_pipeline
from botprov.app.progress import ProgressBoard
from botprov.config.loader import AuthSettings, get_auth_config, get_http_config, get_session_config
from botprov.core.auth import InvalidEndpoint, InvalidRequest, TransientOrUnknown, UnexpectedUpstream
from botprov.core.consent_service import ScopeVerifier
from botprov.core.devportal_client import DevPortalClient
from botprov.core.graph_client import GraphClient
from botprov.core.models import Credentials, ScopeCheckResult, Session
from botprov.core.session_store import (
    InMemorySessionStore, PendingStates, SessionStore, open_session, require_session
)
from botprov.core.token_cache import TokenCache
from botprov.http.throttle import CancelToken, set_max_concurrency

log = logging.getLogger(__name__)


def validate_endpoint(endpoint: str) -> str:
    ep = (endpoint or "").strip()
    parsed = urlparse(ep)
    if parsed.scheme != "https" or not parsed.netloc:
        raise InvalidEndpoint(f"Messaging endpoint must use https: {ep or '(empty)'}")
    return ep


class Provisioner:
    """
    The four operations the UI layer drives: start_auth, complete_auth,
    check_consent and provision (plus the sideloading check and progress).
    """
    def __init__(
        self,
        settings: AuthSettings | None = None,
        tokens: TokenCache | None = None,
        sessions: SessionStore | None = None,
        graph_factory: Optional[Callable[[Callable[[], str]], GraphClient]] = None,
        portal_factory: Optional[Callable[[Callable[[], str]], DevPortalClient]] = None,
        states: PendingStates | None = None,
    ):
        http_cfg = get_http_config()
        set_max_concurrency(http_cfg["max_concurrency"])

        self.settings = settings or get_auth_config()
        self.tokens = tokens or TokenCache(self.settings, timeout=http_cfg["timeout_seconds"])
        self.sessions = sessions if sessions is not None else InMemorySessionStore(
            ttl_seconds=get_session_config()["ttl_seconds"]
        )
        if isinstance(self.sessions, InMemorySessionStore) and self.sessions.on_expire is None:
            self.sessions.on_expire = self._session_expired
        self.states = states if states is not None else PendingStates()
        self.progress_board = ProgressBoard()
        self.verifier = ScopeVerifier(self.tokens, self.settings)
        self._graph_factory = graph_factory or (lambda tp: GraphClient(tp, logger=log))
        self._portal_factory = portal_factory or (lambda tp: DevPortalClient(tp, logger=log))

    def _session_expired(self, session: Session) -> None:
        self.tokens.release(session.account)
        self.progress_board.forget(session.session_id)
        log.info("Session for %s expired", session.account.username)

    # ---------- auth ----------
    def start_auth(self) -> dict:
        state = self.states.issue()
        return {"auth_url": self.tokens.auth_url(state), "state": state}

    def complete_auth(self, code: str, state: str | None) -> dict:
        self.states.consume(state)
        account = self.tokens.redeem_code(code)
        self.sessions.purge_expired()
        session = open_session(self.sessions, account)
        return {
            "session_id": session.session_id,
            "user_info": {"username": account.username, "tenant_id": account.tenant_id},
        }

    def check_consent(self, session_id: str) -> ScopeCheckResult:
        session = require_session(self.sessions, session_id)
        try:
            return self.verifier.check_consent(session)
        except TransientOrUnknown as ex:
            log.error("Consent check failed for tenant %s: %s", session.account.tenant_id, ex)
            err = UnexpectedUpstream(f"Failed to check scopes: {ex}")
            err.error_code = ex.error_code
            raise err from ex

    def check_sideloading(self, session_id: str) -> dict:
        session = require_session(self.sessions, session_id)
        portal = self._portal_factory(self._token_provider(session, self.settings.tdp_scopes[0]))
        data = portal.sideloading_policy()
        allowed = (data.get("value") or {}).get("isSideloadingAllowed")
        status = "enabled" if allowed is True else "disabled" if allowed is False else "unknown"
        log.info("Sideloading status for %s: %s", session.account.tenant_id, status)
        return {"is_sideloading_allowed": allowed, "status": status}

    # ---------- provisioning ----------
    def _token_provider(self, session, scope: str) -> Callable[[], str]:
        # fetched per call so the conflict-recovery update gets a fresh token
        return lambda: self.tokens.acquire_silent(session.account, scope)

    def provision(self, session_id: str, app_name: str, endpoint: str,
                  cancel: CancelToken | None = None) -> Credentials:
        session = require_session(self.sessions, session_id)
        endpoint = validate_endpoint(endpoint)
        if not (app_name or "").strip():
            raise InvalidRequest("App name required.")

        deps = PipelineDeps(
            graph=self._graph_factory(self._token_provider(session, self.settings.graph_scopes[0])),
            portal=self._portal_factory(self._token_provider(session, self.settings.tdp_scopes[0])),
            cancel=cancel,
        )
        state = PipelineState(app_name=app_name.strip(), endpoint=endpoint)
        state.credentials.tenant_id = session.account.tenant_id
        self.progress_board.begin(session.session_id)
        creds = run_pipeline(state, deps, run_id=session.session_id)
        log.info("Provisioned bot %s for tenant %s", creds.client_id, creds.tenant_id)
        return creds

    def progress(self, session_id: str) -> dict:
        session = require_session(self.sessions, session_id)
        run = self.progress_board.get(session.session_id)
        return run or {"status": "idle", "step": None, "completed": [], "error": None}

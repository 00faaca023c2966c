from __future__ import annotations
import logging
from typing import Dict, List

from botprov.config.loader import AuthSettings
from botprov.core.auth import ConsentRequired
from botprov.core.auth_helpers import build_admin_consent_url, scope_name, scope_resource
from botprov.core.models import ScopeCheckResult, Session
from botprov.core.token_cache import TokenCache

log = logging.getLogger(__name__)


class ScopeVerifier:
    """
    Probe every required scope with a silent acquisition.

    Only ConsentRequired is turned into a "missing" entry; any other failure
    propagates so a caller never sees a partial granted/missing split.
    """
    def __init__(self, tokens: TokenCache, settings: AuthSettings):
        self.tokens = tokens
        self.settings = settings

    def required_scopes(self) -> List[str]:
        # grouped by resource in first-seen order; one silent call per scope
        groups: Dict[str, List[str]] = {}
        for s in self.settings.required_scopes:
            groups.setdefault(scope_resource(s), []).append(s)
        return [s for group in groups.values() for s in group]

    def check_consent(self, session: Session) -> ScopeCheckResult:
        result = ScopeCheckResult()
        for scope in self.required_scopes():
            name = scope_name(scope)
            try:
                self.tokens.acquire_silent(session.account, scope)
            except ConsentRequired as ex:
                result.missing.append(name)
                result.scope_errors[name] = ex.error_code or ex.code
                log.info("Scope missing (needs consent): %s - %s", scope, result.scope_errors[name])
                continue
            result.granted.append(name)
            log.debug("Scope granted: %s", scope)

        if result.missing:
            result.admin_consent_url = build_admin_consent_url(
                session.account.tenant_id,
                self.settings.client_id,
                self.settings.admin_consent_redirect_uri,
                host=self.settings.authority_host,
            )
        return result

from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

@dataclass(frozen=True)
class Account:
    home_account_id: str
    tenant_id: str
    username: str

@dataclass
class Session:
    session_id: str
    account: Account
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)

@dataclass
class ScopeCheckResult:
    granted: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    admin_consent_url: Optional[str] = None
    scope_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def has_consent(self) -> bool:
        return not self.missing

    def to_dict(self) -> dict:
        out = {"hasConsent": self.has_consent, "grantedScopes": list(self.granted)}
        if self.missing:
            out["missingScopes"] = list(self.missing)
            out["scopeErrors"] = dict(self.scope_errors)
            out["adminConsentUrl"] = self.admin_consent_url
        return out

@dataclass
class Credentials:
    client_id: str = ""
    object_id: str = ""
    client_secret: str = field(default="", repr=False)  # single disclosure, never logged
    secret_expires_on: str = ""
    teams_app_id: str = ""
    bot_endpoint: str = ""
    tenant_id: str = ""
    bot_updated: bool = False

    def to_dict(self) -> dict:
        return {
            "CLIENT_ID": self.client_id,
            "CLIENT_SECRET": self.client_secret,
            "SECRET_EXPIRES_ON": self.secret_expires_on,
            "TENANT_ID": self.tenant_id,
            "TEAMS_APP_ID": self.teams_app_id,
            "BOT_ENDPOINT": self.bot_endpoint,
        }

from __future__ import annotations
import json, os, pathlib
from dataclasses import dataclass, field
from typing import List

CONFIG_PATH = os.environ.get("BOTPROV_CONFIG", "config/appsettings.json")

GRAPH_SCOPE = "https://graph.microsoft.com/Application.ReadWrite.All"
TDP_SCOPE = "https://dev.teams.microsoft.com/AppDefinitions.ReadWrite"


def load_appsettings(path: str | None = None) -> dict:
    p = pathlib.Path(path or CONFIG_PATH)
    if not p.exists():
        return {}
    try:
        text = p.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        return json.loads(text)
    except (OSError, ValueError):
        # malformed JSON → fall back to defaults
        return {}


@dataclass
class AuthSettings:
    client_id: str
    client_secret: str
    authority_host: str = "https://login.microsoftonline.com"
    tenant: str = "common"
    redirect_uri: str = "http://localhost:8080/redirect.html"
    admin_consent_redirect_uri: str = "http://localhost:8080/admin-consent-callback.html"
    sign_in_scopes: List[str] = field(default_factory=lambda: ["User.Read"])
    graph_scopes: List[str] = field(default_factory=lambda: [GRAPH_SCOPE])
    tdp_scopes: List[str] = field(default_factory=lambda: [TDP_SCOPE])

    @property
    def authority(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant}"

    @property
    def required_scopes(self) -> List[str]:
        # grouped by resource: Graph first, then the Developer Portal
        return list(self.graph_scopes) + list(self.tdp_scopes)


def get_auth_config(raw: dict | None = None) -> AuthSettings:
    cfg = (raw if raw is not None else load_appsettings()).get("auth", {})
    endpoint_base = os.environ.get("ENDPOINT_BASE", cfg.get("endpoint_base", "")).rstrip("/")
    redirect = cfg.get("redirect_uri") or (f"{endpoint_base}/redirect.html" if endpoint_base else None)
    consent_redirect = cfg.get("admin_consent_redirect_uri") or (
        f"{endpoint_base}/admin-consent-callback.html" if endpoint_base else None
    )

    out = AuthSettings(
        client_id=os.environ.get("CLIENT_ID", cfg.get("client_id", "")),
        client_secret=os.environ.get("CLIENT_SECRET", cfg.get("client_secret", "")),
    )
    if cfg.get("authority_host"): out.authority_host = cfg["authority_host"]
    out.tenant = os.environ.get("AUTHORITY_TENANT", cfg.get("tenant", out.tenant))
    out.redirect_uri = os.environ.get("REDIRECT_URI", redirect or out.redirect_uri)
    out.admin_consent_redirect_uri = os.environ.get(
        "ADMIN_CONSENT_URI", consent_redirect or out.admin_consent_redirect_uri
    )
    if cfg.get("sign_in_scopes"): out.sign_in_scopes = list(cfg["sign_in_scopes"])
    if cfg.get("graph_scopes"): out.graph_scopes = list(cfg["graph_scopes"])
    if cfg.get("tdp_scopes"): out.tdp_scopes = list(cfg["tdp_scopes"])
    return out


def get_http_config(raw: dict | None = None):
    cfg = (raw if raw is not None else load_appsettings()).get("http", {})
    return {
        "timeout_seconds": float(cfg.get("timeout_seconds", 30)),
        # provisioning calls are never retried unless explicitly configured
        "max_retries": int(cfg.get("max_retries", 0)),
        "max_concurrency": int(cfg.get("max_concurrency", 6)),
    }


def get_session_config(raw: dict | None = None):
    cfg = (raw if raw is not None else load_appsettings()).get("session", {})
    ttl = os.environ.get("SESSION_TTL_SECONDS", cfg.get("ttl_seconds", 3600))
    return {"ttl_seconds": int(ttl)}


def get_endpoints_config(raw: dict | None = None):
    cfg = (raw if raw is not None else load_appsettings()).get("endpoints", {})
    return {
        "graph_base_url": cfg.get("graph_base_url", "https://graph.microsoft.com/v1.0"),
        "tdp_base_url": cfg.get("tdp_base_url", "https://dev.teams.microsoft.com"),
    }


def get_server_config(raw: dict | None = None):
    cfg = (raw if raw is not None else load_appsettings()).get("server", {})
    return {
        "host": cfg.get("host", "0.0.0.0"),
        "port": int(os.environ.get("PORT", cfg.get("port", 3003))),
    }

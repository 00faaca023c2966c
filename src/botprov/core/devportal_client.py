# src/botprov/core/devportal_client.py
from __future__ import annotations
from typing import Callable, Dict, Optional
from botprov.http.client import HttpClient
from botprov.http.throttle import CancelToken
from botprov.config.loader import get_endpoints_config
from botprov.core.graph_client import _api_client

CLIENT_SOURCE = "teamstoolkit"


class DevPortalClient:
    """
    Teams Developer Portal calls (app catalog + bot registration).
    """
    def __init__(
        self,
        token_provider: Callable[[], str],
        timeout: float | None = None,
        max_retries: int | None = None,
        logger=None,
        http: Optional[HttpClient] = None,
    ):
        self._token_provider = token_provider
        self._http = http or _api_client(
            get_endpoints_config()["tdp_base_url"], timeout, max_retries, logger
        )

    def _headers(self, content_type: str = "application/json") -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token_provider()}",
            "Content-Type": content_type,
            "Client-Source": CLIENT_SOURCE,
        }

    def import_app_package(self, package: bytes, *, cancel: CancelToken | None = None) -> dict:
        """POST /api/appdefinitions/v2/import with a zip body; returns {"teamsAppId", "tenantId", ...}."""
        return self._http.post_bytes(
            "/api/appdefinitions/v2/import", package,
            headers=self._headers("application/zip"), cancel=cancel,
        )

    def register_bot(self, bot_id: str, name: str, endpoint: str, *, cancel: CancelToken | None = None) -> dict:
        return self._http.post_json("/api/botframework", headers=self._headers(), json={
            "botId": bot_id,
            "name": name,
            "description": "",
            "messagingEndpoint": endpoint,
            "callingEndpoint": "",
            "configuredChannels": ["msteams"],
            "isSingleTenant": True,
        }, cancel=cancel)

    def update_bot(self, bot_id: str, name: str, endpoint: str, *, cancel: CancelToken | None = None) -> dict:
        return self._http.post_json(f"/api/botframework/{bot_id}", headers=self._headers(), json={
            "botId": bot_id,
            "name": name,
            "messagingEndpoint": endpoint,
            "configuredChannels": ["msteams"],
        }, cancel=cancel)

    def sideloading_policy(self) -> dict:
        return self._http.get_json("/api/usersettings/mtUserAppPolicy", headers=self._headers())

# src/botprov/core/graph_client.py
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Any, Optional
from botprov.http.client import HttpClient
from botprov.http.throttle import CancelToken
from botprov.config.loader import get_endpoints_config, get_http_config

SECRET_LIFETIME = timedelta(days=730)  # two years


def _api_client(base_url: str, timeout, max_retries, logger) -> HttpClient:
    http_cfg = get_http_config()
    to = float(timeout if timeout is not None else http_cfg.get("timeout_seconds", 30))
    mr = int(max_retries if max_retries is not None else http_cfg.get("max_retries", 0))
    return HttpClient(base_url=base_url, timeout=to, max_retries=mr, logger=logger)


class GraphClient:
    """
    Identity-management calls (app registrations). Token is provided lazily via token_provider().
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
            get_endpoints_config()["graph_base_url"], timeout, max_retries, logger
        )

    def _auth_headers(self, extra: Dict[str, str] | None = None) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {self._token_provider()}", "Content-Type": "application/json"}
        if extra:
            h.update(extra)
        return h

    def post_json(self, path_or_url: str, *, json: Any = None, cancel: CancelToken | None = None) -> dict:
        return self._http.post_json(path_or_url, headers=self._auth_headers(), json=json, cancel=cancel)

    def create_application(self, display_name: str, *, cancel: CancelToken | None = None) -> dict:
        """POST /applications; returns {"appId", "id", ...}."""
        return self.post_json(
            "/applications",
            json={"displayName": display_name, "signInAudience": "AzureADMultipleOrgs"},
            cancel=cancel,
        )

    def add_password(
        self,
        object_id: str,
        *,
        display_name: str = "default",
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> dict:
        """POST /applications/{id}/addPassword. The returned secretText is shown once."""
        expires = (now or datetime.now(timezone.utc)) + SECRET_LIFETIME
        res = self.post_json(
            f"/applications/{object_id}/addPassword",
            json={"passwordCredential": {
                "displayName": display_name,
                "endDateTime": expires.strftime("%Y-%m-%dT%H:%M:%SZ"),
            }},
            cancel=cancel,
        )
        res.setdefault("endDateTime", expires.strftime("%Y-%m-%dT%H:%M:%SZ"))
        return res

from __future__ import annotations
import json as _json
from typing import Any, Dict, Optional
import requests

from botprov.http.errors import (
    HttpError, UnauthorizedError, ForbiddenError, NotFoundError, ConflictError,
    ThrottleError, ServerError, NetworkError, CancelledError, InvalidResponseError
)
from botprov.http.throttle import (
    CancelToken, ConcurrencyGate, RETRY_STATUSES, compute_sleep_seconds, sleep_backoff
)


class HttpClient:
    def __init__(self, base_url: str = "", timeout: float = 30.0, max_retries: int = 0,
                 logger=None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = session or requests.Session()
        self._log = logger  # optional, expects .debug()

    def _full_url(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        if self.base_url:
            return f"{self.base_url}/{url.lstrip('/')}"
        return url

    def _log_debug(self, msg: str) -> None:
        if self._log:
            self._log.debug(msg)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[bytes] = None,
        cancel: Optional[CancelToken] = None,
    ) -> requests.Response:
        full = self._full_url(url)
        attempt = 0

        while True:
            if cancel is not None and cancel.cancelled:
                raise CancelledError(-1, full, "Request cancelled")
            try:
                with ConcurrencyGate():
                    self._log_debug(f"HTTP {method.upper()} {full}")
                    resp = self._session.request(
                        method=method.upper(),
                        url=full,
                        headers=headers or {},
                        params=params,
                        json=json,
                        data=data,
                        timeout=self.timeout,
                    )
            except requests.exceptions.RequestException as ex:
                if attempt >= self.max_retries:
                    raise NetworkError(-1, full, str(ex)) from ex
                sleep_backoff(compute_sleep_seconds(attempt, None), cancel)
                attempt += 1
                continue

            if resp.status_code < 400:
                self._log_debug(f"HTTP {resp.status_code} {full}")
                return resp

            # Retryable?
            if resp.status_code in RETRY_STATUSES and attempt < self.max_retries:
                self._log_debug(f"HTTP {resp.status_code} {full} (retry {attempt})")
                sleep_backoff(compute_sleep_seconds(attempt, resp.headers.get("Retry-After")), cancel)
                attempt += 1
                continue

            # Map to typed errors
            body = _safe_text(resp)
            if resp.status_code == 401:
                raise UnauthorizedError(401, full, "Unauthorized", body)
            if resp.status_code == 403:
                raise ForbiddenError(403, full, "Forbidden", body)
            if resp.status_code == 404:
                raise NotFoundError(404, full, "Not Found", body)
            if resp.status_code == 409:
                raise ConflictError(409, full, "Conflict", body)
            if resp.status_code == 429:
                raise ThrottleError(429, full, "Too Many Requests", body)
            if 500 <= resp.status_code <= 599:
                raise ServerError(resp.status_code, full, "Server error", body)
            raise HttpError(resp.status_code, full, "HTTP error", body)

    # ---------- Convenience helpers ----------
    def get_json(self, url: str, **kwargs) -> dict:
        r = self.request("GET", url, **kwargs)
        return _parse_object(r, self._full_url(url))

    def post_json(self, url: str, *, headers=None, json=None, cancel=None) -> dict:
        r = self.request("POST", url, headers=headers, json=json, cancel=cancel)
        return _parse_object(r, self._full_url(url))

    def post_bytes(self, url: str, body: bytes, *, headers=None, cancel=None) -> dict:
        r = self.request("POST", url, headers=headers, data=body, cancel=cancel)
        return _parse_object(r, self._full_url(url))


def _parse_object(resp: requests.Response, url: str) -> dict:
    # empty 2xx bodies (202/204) read as {}
    text = _safe_text(resp)
    try:
        data = _json.loads(text or "{}")
    except ValueError as ex:
        raise InvalidResponseError(resp.status_code, url, "Response body is not JSON", text) from ex
    if not isinstance(data, dict):
        raise InvalidResponseError(resp.status_code, url, "Response body is not a JSON object", text)
    return data


def _safe_text(resp: requests.Response) -> str:
    try:
        return resp.text or ""
    except (UnicodeDecodeError, requests.exceptions.RequestException):
        return ""

from __future__ import annotations
import json as _json
from typing import Any

SNIPPET_LEN = 2000


class HttpError(Exception):
    def __init__(self, status: int, url: str, message: str = "", body: str = ""):
        super().__init__(message or f"HTTP {status} for {url}")
        self.status = status
        self.url = url
        self.body = body  # full upstream body

    @property
    def body_snippet(self) -> str:
        """Truncated body, for log lines."""
        return self.body[:SNIPPET_LEN]

    @property
    def payload(self) -> Any:
        """Upstream error body, parsed when it is JSON."""
        try:
            return _json.loads(self.body)
        except ValueError:
            return self.body

class UnauthorizedError(HttpError): pass           # 401
class ForbiddenError(HttpError): pass              # 403
class NotFoundError(HttpError): pass               # 404
class ConflictError(HttpError): pass               # 409
class ThrottleError(HttpError): pass               # 429
class ServerError(HttpError): pass                 # 5xx
class NetworkError(HttpError): pass                # request/timeout
class CancelledError(HttpError): pass              # caller cancelled before send
class InvalidResponseError(HttpError): pass        # 2xx whose body is not a JSON object

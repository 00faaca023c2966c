# src/botprov/http/throttle.py
from __future__ import annotations
import random
import time
import threading

# Statuses retried when http.max_retries > 0. Off by default: a replayed
# POST /applications would create a second registration.
RETRY_STATUSES = {429, 502, 503, 504}
MAX_BACKOFF = 8

def compute_sleep_seconds(attempt: int, retry_after_header: str | None) -> float:
    # Retry-After wins (integer seconds), capped so one reply can't park a request
    if retry_after_header and retry_after_header.strip().isdigit():
        return min(int(retry_after_header), MAX_BACKOFF * 4)
    base = min(2 ** attempt, MAX_BACKOFF)
    return base * (0.6 + 0.8 * random.random())

def sleep_backoff(seconds: float, cancel: "CancelToken | None" = None) -> None:
    if seconds <= 0:
        return
    if cancel is None:
        time.sleep(seconds)
    else:
        cancel.wait(seconds)  # wakes early on cancel; the next send check raises

# Global outbound concurrency gate, shared by all sessions
_MAX_CONCURRENCY = 6
_SEMAPHORE = threading.Semaphore(_MAX_CONCURRENCY)

class ConcurrencyGate:
    def __enter__(self):
        _SEMAPHORE.acquire()
    def __exit__(self, exc_type, exc, tb):
        _SEMAPHORE.release()

def set_max_concurrency(n: int):
    """Call once on startup (provisioner init) to adjust gate size."""
    global _MAX_CONCURRENCY, _SEMAPHORE
    if max(1, int(n)) == _MAX_CONCURRENCY:
        return
    _MAX_CONCURRENCY = max(1, int(n))
    _SEMAPHORE = threading.Semaphore(_MAX_CONCURRENCY)


class CancelToken:
    """Request-scoped cancellation flag checked before every remote call."""
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def wait(self, seconds: float) -> bool:
        return self._event.wait(seconds)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

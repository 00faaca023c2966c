# Simple pub/sub for provisioning progress
import logging
import threading

log = logging.getLogger(__name__)

_subs: dict[str, list] = {}
_lock = threading.Lock()

def publish(topic: str, payload=None):
    with _lock:
        handlers = list(_subs.get(topic, []))
    for h in handlers:
        try:
            h(payload)
        except Exception:
            # a broken listener must not abort provisioning
            log.exception("event handler failed for %s", topic)

def subscribe(topic: str, handler):
    with _lock:
        _subs.setdefault(topic, []).append(handler)

def unsubscribe(topic: str, handler):
    with _lock:
        hs = _subs.get(topic, [])
        if handler in hs:
            hs.remove(handler)

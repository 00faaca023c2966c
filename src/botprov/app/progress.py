# Per-session provisioning progress, fed by provision.step.* events
from __future__ import annotations
import threading
from typing import Dict, Optional

from botprov.app import event_bus
from botprov.app.pipeline import Step


class ProgressBoard:
    """
    Latest provisioning run per session id, for the status route to poll.
    Only run ids registered with `begin` are tracked, so several boards can
    share the process-wide bus.
    """
    def __init__(self):
        self._runs: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self._handlers = {
            "provision.step.started": self._on_started,
            "provision.step.done": self._on_done,
            "provision.step.failed": self._on_failed,
        }
        for topic, handler in self._handlers.items():
            event_bus.subscribe(topic, handler)

    def close(self) -> None:
        for topic, handler in self._handlers.items():
            event_bus.unsubscribe(topic, handler)

    def begin(self, run_id: str) -> None:
        with self._lock:
            self._runs[run_id] = {"status": "running", "step": None, "completed": [], "error": None}

    def forget(self, run_id: str) -> None:
        with self._lock:
            self._runs.pop(run_id, None)

    def get(self, run_id: str) -> Optional[dict]:
        with self._lock:
            run = self._runs.get(run_id)
            return None if run is None else {**run, "completed": list(run["completed"])}

    # ---------- bus handlers ----------
    def _run(self, payload) -> Optional[dict]:
        return self._runs.get((payload or {}).get("run_id"))

    def _on_started(self, payload) -> None:
        with self._lock:
            run = self._run(payload)
            if run is not None:
                run["step"] = payload["step"]

    def _on_done(self, payload) -> None:
        with self._lock:
            run = self._run(payload)
            if run is None:
                return
            run["completed"].append(payload["step"])
            if payload["step"] == Step.REGISTER_BOT.value:
                run["status"], run["step"] = "done", None

    def _on_failed(self, payload) -> None:
        with self._lock:
            run = self._run(payload)
            if run is not None:
                run["status"], run["error"] = "failed", payload.get("error")

"""
Bot provisioning as an explicit state machine.

    CREATE_IDENTITY -> MINT_SECRET -> CREATE_APP_PACKAGE -> REGISTER_BOT -> DONE

Any step failure moves to FAILED and stops the run. The only non-linear edge
is inside REGISTER_BOT: a 409 from create is followed by exactly one update
call for the same bot id. Nothing else is retried.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

from botprov.app import event_bus
from botprov.core.app_package import build_manifest, build_package
from botprov.core.auth import AuthError, Cancelled, FatalPipelineError
from botprov.core.devportal_client import DevPortalClient
from botprov.core.graph_client import GraphClient
from botprov.core.models import Credentials
from botprov.http.errors import CancelledError, ConflictError, HttpError, InvalidResponseError
from botprov.http.throttle import CancelToken

log = logging.getLogger(__name__)


class Step(str, Enum):
    CREATE_IDENTITY = "create_identity"
    MINT_SECRET = "mint_secret"
    CREATE_APP_PACKAGE = "create_app_package"
    REGISTER_BOT = "register_bot"
    DONE = "done"
    FAILED = "failed"


NEXT: Dict[Step, Step] = {
    Step.CREATE_IDENTITY: Step.MINT_SECRET,
    Step.MINT_SECRET: Step.CREATE_APP_PACKAGE,
    Step.CREATE_APP_PACKAGE: Step.REGISTER_BOT,
    Step.REGISTER_BOT: Step.DONE,
}
TERMINAL = (Step.DONE, Step.FAILED)


@dataclass
class PipelineState:
    app_name: str
    endpoint: str
    step: Step = Step.CREATE_IDENTITY
    credentials: Credentials = field(default_factory=Credentials)
    failed_step: Optional[Step] = None
    error: Optional[Exception] = None


@dataclass
class PipelineDeps:
    graph: GraphClient
    portal: DevPortalClient
    cancel: Optional[CancelToken] = None


# ---------- step handlers ----------
def create_identity(state: PipelineState, deps: PipelineDeps) -> None:
    app = deps.graph.create_application(state.app_name, cancel=deps.cancel)
    state.credentials.client_id = app["appId"]
    state.credentials.object_id = app["id"]
    log.info("Created app registration %s", app["appId"])

def mint_secret(state: PipelineState, deps: PipelineDeps) -> None:
    res = deps.graph.add_password(state.credentials.object_id, cancel=deps.cancel)
    state.credentials.client_secret = res["secretText"]
    state.credentials.secret_expires_on = res.get("endDateTime", "")
    log.info("Added password credential to %s", state.credentials.client_id)

def create_app_package(state: PipelineState, deps: PipelineDeps) -> None:
    manifest = build_manifest(state.credentials.client_id, state.app_name)
    res = deps.portal.import_app_package(build_package(manifest), cancel=deps.cancel)
    state.credentials.teams_app_id = res["teamsAppId"]
    log.info("Imported Teams app %s", res["teamsAppId"])

def register_bot(state: PipelineState, deps: PipelineDeps) -> None:
    c = state.credentials
    try:
        deps.portal.register_bot(c.client_id, state.app_name, state.endpoint, cancel=deps.cancel)
    except ConflictError:
        log.info("Bot %s already registered, updating instead", c.client_id)
        deps.portal.update_bot(c.client_id, state.app_name, state.endpoint, cancel=deps.cancel)
        c.bot_updated = True
    c.bot_endpoint = state.endpoint

HANDLERS: Dict[Step, Callable[[PipelineState, PipelineDeps], None]] = {
    Step.CREATE_IDENTITY: create_identity,
    Step.MINT_SECRET: mint_secret,
    Step.CREATE_APP_PACKAGE: create_app_package,
    Step.REGISTER_BOT: register_bot,
}


def _fail(state: PipelineState, err: Exception) -> PipelineState:
    state.failed_step, state.error = state.step, err
    state.step = Step.FAILED
    return state


def advance(state: PipelineState, deps: PipelineDeps) -> PipelineState:
    """Run the current step and move to the next one (or FAILED)."""
    if state.step in TERMINAL:
        return state
    if deps.cancel is not None and deps.cancel.cancelled:
        return _fail(state, Cancelled(f"Cancelled before {state.step.value}"))
    try:
        HANDLERS[state.step](state, deps)
    except CancelledError:
        return _fail(state, Cancelled(f"Cancelled during {state.step.value}"))
    except InvalidResponseError as e:
        log.error("Step %s got an unreadable reply: HTTP %s %s", state.step.value, e.status, e.url)
        return _fail(state, FatalPipelineError(
            state.step.value, e.payload, f"{state.step.value} failed: {e}"
        ))
    except HttpError as e:
        log.error("Step %s failed: HTTP %s %s", state.step.value, e.status, e.url)
        return _fail(state, FatalPipelineError(
            state.step.value, e.payload, f"{state.step.value} failed: HTTP {e.status}"
        ))
    except AuthError as e:
        # token acquisition already classified this; pass it through unchanged
        log.warning("Step %s could not get a token: %s", state.step.value, e.code)
        return _fail(state, e)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        # JSON object of the wrong shape
        log.error("Step %s got a malformed reply: %r", state.step.value, e)
        return _fail(state, FatalPipelineError(
            state.step.value, None, f"{state.step.value} failed: malformed response ({e!r})"
        ))
    state.step = NEXT[state.step]
    return state


def run_pipeline(state: PipelineState, deps: PipelineDeps, run_id: str | None = None) -> Credentials:
    """Drive `state` to DONE or FAILED, publishing provision.step.* events tagged with run_id."""
    while state.step not in TERMINAL:
        current = state.step
        event_bus.publish("provision.step.started", {"run_id": run_id, "step": current.value})
        advance(state, deps)
        if state.step is Step.FAILED:
            event_bus.publish("provision.step.failed", {
                "run_id": run_id, "step": current.value, "error": str(state.error),
            })
        else:
            event_bus.publish("provision.step.done", {"run_id": run_id, "step": current.value})
    if state.step is Step.FAILED:
        raise state.error
    return state.credentials

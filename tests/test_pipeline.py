"""
Tests for the provisioning state machine.
"""

from functools import reduce
from unittest.mock import Mock

import pytest

from botprov.app import event_bus
from botprov.app.pipeline import (
    PipelineDeps, PipelineState, Step, advance, register_bot, run_pipeline
)
from botprov.core.auth import Cancelled, ConsentRequired, FatalPipelineError
from botprov.core.models import Credentials
from botprov.http.errors import CancelledError, ConflictError, InvalidResponseError, ServerError
from botprov.http.throttle import CancelToken

ENDPOINT = "https://bot.example/api/messages"


@pytest.fixture
def remotes():
    """graph and portal share one parent mock so call order is recorded"""
    m = Mock()
    m.graph.create_application.return_value = {"appId": "app-1", "id": "obj-1"}
    m.graph.add_password.return_value = {"secretText": "s3cret", "endDateTime": "2028-01-01T00:00:00Z"}
    m.portal.import_app_package.return_value = {"teamsAppId": "teams-1", "tenantId": "tenant-a"}
    m.portal.register_bot.return_value = {}
    m.portal.update_bot.return_value = {}
    return m


def _deps(m, cancel=None):
    return PipelineDeps(graph=m.graph, portal=m.portal, cancel=cancel)


def _state():
    return PipelineState(app_name="Echo", endpoint=ENDPOINT)


def _call_names(m):
    return [c[0] for c in m.mock_calls]


class TestRunPipeline:
    def test_happy_path(self, remotes):
        creds = run_pipeline(_state(), _deps(remotes))

        assert creds.client_id == "app-1"
        assert creds.client_secret == "s3cret"
        assert creds.teams_app_id == "teams-1"
        assert creds.bot_endpoint == ENDPOINT
        assert creds.bot_updated is False
        assert _call_names(remotes) == [
            "graph.create_application",
            "graph.add_password",
            "portal.import_app_package",
            "portal.register_bot",
        ]

    def test_step_arguments(self, remotes):
        run_pipeline(_state(), _deps(remotes))
        remotes.graph.create_application.assert_called_once_with("Echo", cancel=None)
        remotes.graph.add_password.assert_called_once_with("obj-1", cancel=None)
        remotes.portal.register_bot.assert_called_once_with("app-1", "Echo", ENDPOINT, cancel=None)
        package = remotes.portal.import_app_package.call_args.args[0]
        assert package[:2] == b"PK"

    def test_conflict_recovers_with_one_update(self, remotes):
        remotes.portal.register_bot.side_effect = ConflictError(409, "u", "Conflict", '{"error":"exists"}')
        creds = run_pipeline(_state(), _deps(remotes))

        remotes.portal.update_bot.assert_called_once_with("app-1", "Echo", ENDPOINT, cancel=None)
        assert creds.bot_updated is True
        assert creds.bot_endpoint == ENDPOINT

    def test_update_failure_is_fatal(self, remotes):
        remotes.portal.register_bot.side_effect = ConflictError(409, "u", "Conflict", "")
        remotes.portal.update_bot.side_effect = ServerError(500, "u", "Server error", '{"error":"nope"}')
        with pytest.raises(FatalPipelineError) as exc:
            run_pipeline(_state(), _deps(remotes))
        assert exc.value.step == "register_bot"
        assert exc.value.payload == {"error": "nope"}
        assert remotes.portal.update_bot.call_count == 1

    def test_mint_secret_failure_stops_pipeline(self, remotes):
        remotes.graph.add_password.side_effect = ServerError(503, "u", "Server error", "unavailable")
        with pytest.raises(FatalPipelineError) as exc:
            run_pipeline(_state(), _deps(remotes))

        assert exc.value.step == "mint_secret"
        assert exc.value.payload == "unavailable"
        remotes.portal.import_app_package.assert_not_called()
        remotes.portal.register_bot.assert_not_called()
        assert remotes.graph.add_password.call_count == 1

    def test_token_error_passes_through(self, remotes):
        remotes.portal.import_app_package.side_effect = ConsentRequired("no tdp consent")
        with pytest.raises(ConsentRequired):
            run_pipeline(_state(), _deps(remotes))
        remotes.portal.register_bot.assert_not_called()

    def test_malformed_response_is_fatal(self, remotes):
        remotes.graph.create_application.return_value = {"id": "obj-1"}
        with pytest.raises(FatalPipelineError) as exc:
            run_pipeline(_state(), _deps(remotes))
        assert exc.value.step == "create_identity"
        remotes.graph.add_password.assert_not_called()

    def test_events_published(self, remotes):
        seen = []
        handler = lambda p: seen.append(p["step"])
        event_bus.subscribe("provision.step.done", handler)
        try:
            run_pipeline(_state(), _deps(remotes))
        finally:
            event_bus.unsubscribe("provision.step.done", handler)
        assert seen == ["create_identity", "mint_secret", "create_app_package", "register_bot"]

    def test_events_carry_run_id(self, remotes):
        seen = []
        handler = lambda p: seen.append(p["run_id"])
        event_bus.subscribe("provision.step.started", handler)
        try:
            run_pipeline(_state(), _deps(remotes), run_id="sess-1")
        finally:
            event_bus.unsubscribe("provision.step.started", handler)
        assert seen == ["sess-1"] * 4


class TestAdvance:
    """Transitions in isolation"""

    def test_single_step(self, remotes):
        state = advance(_state(), _deps(remotes))
        assert state.step is Step.MINT_SECRET
        assert state.credentials.object_id == "obj-1"
        remotes.graph.add_password.assert_not_called()

    def test_register_bot_from_mid_state(self, remotes):
        state = PipelineState(app_name="Echo", endpoint=ENDPOINT, step=Step.REGISTER_BOT,
                              credentials=Credentials(client_id="app-9"))
        advance(state, _deps(remotes))
        assert state.step is Step.DONE
        remotes.portal.register_bot.assert_called_once_with("app-9", "Echo", ENDPOINT, cancel=None)

    def test_terminal_states_do_not_move(self, remotes):
        for terminal in (Step.DONE, Step.FAILED):
            state = PipelineState(app_name="Echo", endpoint=ENDPOINT, step=terminal)
            assert advance(state, _deps(remotes)).step is terminal
        assert remotes.mock_calls == []

    def test_failure_records_step(self, remotes):
        remotes.graph.create_application.side_effect = ServerError(500, "u", "Server error", "{}")
        state = advance(_state(), _deps(remotes))
        assert state.step is Step.FAILED
        assert state.failed_step is Step.CREATE_IDENTITY
        assert isinstance(state.error, FatalPipelineError)


class TestCancellation:
    def test_cancel_before_start(self, remotes):
        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            run_pipeline(_state(), _deps(remotes, token))
        assert remotes.mock_calls == []

    def test_cancel_between_steps(self, remotes):
        token = CancelToken()
        remotes.graph.create_application.side_effect = lambda *a, **kw: (token.cancel(), {"appId": "a", "id": "o"})[1]
        with pytest.raises(Cancelled):
            run_pipeline(_state(), _deps(remotes, token))
        remotes.graph.add_password.assert_not_called()

    def test_cancel_inside_http(self, remotes):
        remotes.graph.add_password.side_effect = CancelledError(-1, "u", "Request cancelled")
        state = _state()
        with pytest.raises(Cancelled):
            run_pipeline(state, _deps(remotes))
        assert state.failed_step is Step.MINT_SECRET


class TestRegisterBotHandler:
    def test_non_conflict_error_propagates(self, remotes):
        remotes.portal.register_bot.side_effect = ServerError(500, "u", "Server error", "")
        state = PipelineState(app_name="Echo", endpoint=ENDPOINT, credentials=Credentials(client_id="app-1"))
        with pytest.raises(ServerError):
            register_bot(state, _deps(remotes))
        remotes.portal.update_bot.assert_not_called()


STEP_CALLS = [
    ("graph.create_application", Step.CREATE_IDENTITY),
    ("graph.add_password", Step.MINT_SECRET),
    ("portal.import_app_package", Step.CREATE_APP_PACKAGE),
    ("portal.register_bot", Step.REGISTER_BOT),
]


def _at_step(step):
    return PipelineState(app_name="Echo", endpoint=ENDPOINT, step=step,
                         credentials=Credentials(client_id="app-1", object_id="obj-1"))


class TestUnreadableReplies:
    """A 2xx the step cannot use fails that step like any upstream error."""

    @pytest.mark.parametrize("call,step", STEP_CALLS)
    def test_non_json_body(self, remotes, call, step):
        reduce(getattr, call.split("."), remotes).side_effect = InvalidResponseError(
            200, "u", "Response body is not JSON", "<html>gateway</html>")
        state = advance(_at_step(step), _deps(remotes))

        assert state.step is Step.FAILED
        assert state.failed_step is step
        assert isinstance(state.error, FatalPipelineError)
        assert state.error.step == step.value
        assert state.error.payload == "<html>gateway</html>"

    @pytest.mark.parametrize("call,step", STEP_CALLS[:3])
    @pytest.mark.parametrize("reply", [["not", "an", "object"], "text", None, {"unrelated": 1}])
    def test_wrong_shape(self, remotes, call, step, reply):
        reduce(getattr, call.split("."), remotes).return_value = reply
        state = advance(_at_step(step), _deps(remotes))

        assert state.step is Step.FAILED
        assert isinstance(state.error, FatalPipelineError)
        assert state.error.step == step.value

    def test_run_raises_named_step(self, remotes):
        remotes.graph.create_application.return_value = ["x"]
        with pytest.raises(FatalPipelineError) as exc:
            run_pipeline(_state(), _deps(remotes))
        assert exc.value.step == "create_identity"
        remotes.graph.add_password.assert_not_called()

"""Tests for the account bootstrap state machine."""

from __future__ import annotations

import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rezzy.errors import BackendUnavailable, ServerFault, ValidationRejected  # noqa: E402
from rezzy.models import current_month  # noqa: E402
from rezzy.services import onboarding_service  # noqa: E402
from rezzy.services.bootstrap_service import (  # noqa: E402
    MAX_RETRY_ATTEMPTS,
    STATE_CHECKING_BACKEND,
    STATE_DEGRADED,
    STATE_ERRORED,
    STATE_READY,
    AccountBootstrap,
)
from rezzy.services.gateway_client import GatewayClient  # noqa: E402

from conftest import timing_out  # noqa: E402

IDENTITY = {"email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"}


def make_machine(gateway, clock, executor, deadline=15.0):
    return AccountBootstrap(gateway, deadline=deadline, clock=clock, executor=executor)


def test_happy_path_reaches_ready(gateway, clock, executor):
    gateway.responses["get_plan"] = {"plan": "free", "usage": {"scans_used": 2, "month": "2024-05"}}
    gateway.responses["get_profile"] = {"position_level": "senior", "job_category": "software_engineer"}
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_READY
    assert snapshot["account"]["plan"] == "free"
    assert snapshot["account"]["email"] == "ada@example.com"
    assert snapshot["usage"] == {"scansUsed": 2, "month": "2024-05"}
    assert snapshot["onboarding"]["required"] is False
    assert snapshot["advisory"] is None
    assert [name for name, _ in gateway.calls] == ["health", "create_account", "get_plan", "get_profile"]


def test_health_timeout_degrades_with_defaults(gateway, clock, executor):
    gateway.responses["health"] = timing_out(clock)
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_DEGRADED
    assert snapshot["account"]["plan"] == "free"
    assert snapshot["usage"] == {"scansUsed": 0, "month": current_month()}
    assert snapshot["advisory"]
    assert snapshot["error"] == "timeout"
    assert snapshot["onboarding"]["required"] is True
    # account creation is skipped once the health probe fails
    assert gateway.called("create_account") == []
    assert STATE_ERRORED in machine.history


def test_degraded_onboarding_respects_local_flag(gateway, clock, executor):
    onboarding_service.mark_completed_locally("u1")
    gateway.responses["health"] = BackendUnavailable()
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_DEGRADED
    assert snapshot["onboarding"] == {"required": False, "completedLocally": True}


def test_bootstrap_twice_creates_one_account(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)

    first = machine.bootstrap("u1", IDENTITY)
    second = machine.bootstrap("u1", IDENTITY)

    assert first == second
    assert len(gateway.accounts) == 1
    assert len(gateway.called("create_account")) == 1


def test_bootstrap_after_degraded_converges_to_ready(gateway, clock, executor):
    gateway.responses["create_account"] = ServerFault(status_code=500)
    machine = make_machine(gateway, clock, executor)
    assert machine.bootstrap("u1", IDENTITY)["state"] == STATE_DEGRADED

    gateway.responses["create_account"] = {}
    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_READY
    assert len(gateway.accounts) == 1


def test_all_timeouts_finish_within_deadline(gateway, clock, executor):
    for name in ("health", "create_account", "get_plan", "get_profile"):
        gateway.responses[name] = timing_out(clock)
    machine = make_machine(gateway, clock, executor, deadline=15.0)
    started = clock()

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_DEGRADED
    assert clock() - started <= 15.0


def test_slow_steps_are_cut_off_by_hard_deadline(gateway, clock, executor):
    def slow(seconds):
        def _respond(timeout=None, **_):
            assert timeout is not None and timeout <= 15.0
            clock.advance(seconds)
            return {}

        return _respond

    gateway.responses["health"] = slow(4.0)
    gateway.responses["create_account"] = slow(9.0)

    def slow_plan(timeout=None, **_):
        # only two seconds of the budget remain for the plan fetch
        assert timeout == 2.0
        clock.advance(timeout)
        raise ValidationRejected(status_code=408)

    gateway.responses["get_plan"] = slow_plan
    machine = make_machine(gateway, clock, executor, deadline=15.0)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_DEGRADED
    assert gateway.called("get_profile") == []


def test_exhausted_deadline_skips_remaining_steps(gateway, clock, executor):
    def eats_budget(timeout=None, **_):
        clock.advance(20.0)
        return {}

    gateway.responses["health"] = eats_budget
    machine = make_machine(gateway, clock, executor, deadline=15.0)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_DEGRADED
    assert snapshot["error"] == "timeout"
    assert gateway.called("create_account") == []


def test_completed_locally_wins_when_profile_fetch_fails(gateway, clock, executor):
    onboarding_service.mark_completed_locally("u1")
    gateway.responses["get_profile"] = ServerFault(status_code=503)
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_READY
    assert snapshot["onboarding"]["required"] is False


def test_completed_locally_wins_when_profile_lacks_fields(gateway, clock, executor):
    onboarding_service.mark_completed_locally("u1")
    gateway.responses["get_profile"] = {"first_name": "Ada"}
    machine = make_machine(gateway, clock, executor)

    assert machine.bootstrap("u1", IDENTITY)["onboarding"]["required"] is False


def test_missing_profile_requires_onboarding(gateway, clock, executor):
    gateway.responses["get_profile"] = ValidationRejected("Not found", status_code=404)
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_READY
    assert snapshot["onboarding"] == {"required": True, "completedLocally": False}


def test_missing_plan_record_assumes_free_tier(gateway, clock, executor):
    gateway.responses["get_plan"] = ValidationRejected("Not found", status_code=404)
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.bootstrap("u1", IDENTITY)

    assert snapshot["state"] == STATE_READY
    assert snapshot["account"]["plan"] == "free"
    assert snapshot["usage"]["scansUsed"] == 0


def test_retry_is_bounded_then_offers_escape_hatch(gateway, clock, executor):
    gateway.responses["health"] = BackendUnavailable()
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)

    for _ in range(MAX_RETRY_ATTEMPTS):
        assert machine.retry()["state"] == STATE_DEGRADED

    health_calls = len(gateway.called("health"))
    snapshot = machine.retry()

    assert snapshot["retryExhausted"] is True
    assert snapshot["retriesLeft"] == 0
    assert len(gateway.called("health")) == health_calls


def test_retry_recovers_to_ready(gateway, clock, executor):
    gateway.responses["health"] = BackendUnavailable()
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)

    gateway.responses["health"] = {}
    snapshot = machine.retry()

    assert snapshot["state"] == STATE_READY
    assert snapshot["retriesLeft"] == MAX_RETRY_ATTEMPTS


def test_continue_limited_makes_no_network_calls(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)

    snapshot = machine.continue_limited("u1", IDENTITY)

    assert snapshot["state"] == STATE_DEGRADED
    assert snapshot["account"]["userId"] == "u1"
    assert gateway.calls == []


def test_complete_onboarding_persists_flag_before_sync(gateway, clock, executor, mongo_db):
    gateway.responses["get_profile"] = ValidationRejected(status_code=404)
    gateway.responses["update_profile"] = BackendUnavailable()
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)

    snapshot = machine.complete_onboarding("senior", "data_engineer")

    assert snapshot["onboarding"] == {"required": False, "completedLocally": True}
    stored = mongo_db.onboarding_flags.find_one({"user_id": "u1"})
    assert stored["completed_locally"] is True
    # the failed sync stays pending
    assert stored["pending_sync"]["position_level"] == "senior"


def test_pending_sync_is_replayed_on_next_bootstrap(gateway, clock, executor):
    gateway.responses["get_profile"] = ValidationRejected(status_code=404)
    gateway.responses["update_profile"] = BackendUnavailable()
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)
    machine.complete_onboarding("lead", "qa_engineer")

    gateway.responses["update_profile"] = {"success": True}
    fresh = make_machine(gateway, clock, executor)
    snapshot = fresh.bootstrap("u1", IDENTITY)

    assert snapshot["onboarding"]["required"] is False
    assert gateway.called("update_profile")[-1]["job_category"] == "qa_engineer"
    assert onboarding_service.get_pending_sync("u1") is None


def test_complete_onboarding_rejects_unknown_values(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)

    try:
        machine.complete_onboarding("wizard", "software_engineer")
    except ValueError as exc:
        assert "position level" in str(exc)
    else:
        raise AssertionError("expected ValueError")


def test_refresh_usage_updates_snapshot(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)

    gateway.responses["get_plan"] = {"plan": "starter", "usage": {"scans_used": 7, "month": "2024-05"}}
    usage = machine.refresh_usage()

    assert usage.scans_used == 7
    assert machine.plan == "starter"


def test_refresh_usage_keeps_previous_snapshot_on_failure(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)
    before = machine.usage

    gateway.responses["get_plan"] = ServerFault(status_code=500)

    assert machine.refresh_usage() is before


def test_history_records_each_step(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)

    assert machine.history[1] == STATE_CHECKING_BACKEND
    assert machine.history[-1] == STATE_READY


class TrickleHandler(BaseHTTPRequestHandler):
    """Answers 200 but sends the body one byte at a time."""

    def do_GET(self):
        body = b"{}" + b" " * 18
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        try:
            for position in range(len(body)):
                self.wfile.write(body[position:position + 1])
                self.wfile.flush()
                time.sleep(0.2)
        except (BrokenPipeError, ConnectionResetError):
            return

    def log_message(self, format, *args):
        pass


@pytest.fixture
def trickling_backend():
    server = ThreadingHTTPServer(("127.0.0.1", 0), TrickleHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def test_deadline_holds_against_trickling_backend(trickling_backend, executor):
    http = requests.Session()
    http.trust_env = False
    machine = AccountBootstrap(GatewayClient(trickling_backend, http=http), deadline=1.0, executor=executor)
    started = time.monotonic()

    snapshot = machine.bootstrap("u1", IDENTITY)

    elapsed = time.monotonic() - started
    assert snapshot["state"] == STATE_DEGRADED
    assert snapshot["error"] == "timeout"
    assert elapsed < 2.0


def test_refresh_usage_waits_for_running_bootstrap(gateway, clock, executor):
    machine = make_machine(gateway, clock, executor)
    machine.bootstrap("u1", IDENTITY)
    gateway.responses["get_plan"] = {"plan": "starter", "usage": {"scans_used": 4, "month": "2024-05"}}
    calls_before = len(gateway.called("get_plan"))

    with machine._lock:
        refresher = threading.Thread(target=machine.refresh_usage)
        refresher.start()
        refresher.join(0.2)
        assert refresher.is_alive()
        assert len(gateway.called("get_plan")) == calls_before

    refresher.join(5)
    assert machine.usage.scans_used == 4
    assert machine.plan == "starter"

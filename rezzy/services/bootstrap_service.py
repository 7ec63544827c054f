"""Account bootstrap state machine.

For a signed-in user this guarantees a backend account exists, a fresh
plan/usage snapshot is held, and onboarding is required exactly when it
should be. When the backend cannot be reached the machine falls back to
degraded mode with synthesised defaults instead of blocking the dashboard.

States::

    idle -> checking_backend -> creating_account -> fetching_plan
         -> fetching_profile -> ready
    (any network step) -> errored -> degraded

Every ``bootstrap`` or ``retry`` call returns with the machine in ``ready``
or ``degraded``.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional

from rezzy import storage
from rezzy.config import DEFAULT_BOOTSTRAP_DEADLINE
from rezzy.errors import GatewayTimeout, RezzyClientError, ValidationRejected
from rezzy.models import (
    PLAN_FREE,
    Account,
    OnboardingState,
    PlanGateDecision,
    UsageSnapshot,
    normalize_plan,
)
from rezzy.services import onboarding_service, plan_gate
from rezzy.services.gateway_client import (
    ACCOUNT_TIMEOUT,
    HEALTH_TIMEOUT,
    PLAN_TIMEOUT,
    PROFILE_TIMEOUT,
    GatewayClient,
)

_LOGGER = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_CHECKING_BACKEND = "checking_backend"
STATE_CREATING_ACCOUNT = "creating_account"
STATE_FETCHING_PLAN = "fetching_plan"
STATE_FETCHING_PROFILE = "fetching_profile"
STATE_READY = "ready"
STATE_ERRORED = "errored"
STATE_DEGRADED = "degraded"

MAX_RETRY_ATTEMPTS = 3

DEGRADED_ADVISORY = "We couldn't reach the Rezzy servers. You can keep working with limited features."
LIMITED_ADVISORY = "Continuing with limited features. Some data may be out of date."

POSITION_LEVELS = (
    "intern",
    "entry_level",
    "junior",
    "mid_level",
    "senior",
    "staff",
    "principal",
    "lead",
    "manager",
    "director",
    "vp",
    "cto",
)

JOB_CATEGORIES = (
    "software_engineer",
    "frontend_developer",
    "backend_developer",
    "full_stack_developer",
    "data_engineer",
    "data_scientist",
    "machine_learning_engineer",
    "devops_engineer",
    "site_reliability_engineer",
    "product_manager",
    "project_manager",
    "ui_ux_designer",
    "qa_engineer",
    "security_engineer",
    "mobile_developer",
    "game_developer",
    "embedded_engineer",
    "cloud_engineer",
    "blockchain_developer",
    "ai_researcher",
)

_shared_sync_executor: Optional[ThreadPoolExecutor] = None
_shared_step_executor: Optional[ThreadPoolExecutor] = None


def default_sync_executor() -> Executor:
    """Return the process-wide executor used for background profile syncs."""
    global _shared_sync_executor
    if _shared_sync_executor is None:
        _shared_sync_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="profile-sync")
    return _shared_sync_executor


def default_step_executor() -> Executor:
    """Return the process-wide executor that runs bootstrap network steps."""
    global _shared_step_executor
    if _shared_step_executor is None:
        _shared_step_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="bootstrap-step")
    return _shared_step_executor


def _identity_fields(identity: Optional[Dict[str, str]]) -> Dict[str, str]:
    identity = identity or {}
    return {
        "email": identity.get("email") or "",
        "first_name": identity.get("first_name") or "",
        "last_name": identity.get("last_name") or "",
    }


def _profile_complete(profile: Dict[str, Any]) -> bool:
    return bool(profile.get("position_level") or profile.get("positionLevel")) and bool(
        profile.get("job_category") or profile.get("jobCategory")
    )


class AccountBootstrap:
    """Per-user bootstrap state shared by every dashboard surface."""

    def __init__(
        self,
        gateway: GatewayClient,
        *,
        deadline: float = DEFAULT_BOOTSTRAP_DEADLINE,
        clock: Callable[[], float] = time.monotonic,
        executor: Optional[Executor] = None,
        step_executor: Optional[Executor] = None,
    ):
        self.gateway = gateway
        self.deadline = deadline
        self._clock = clock
        self._executor = executor
        self._step_executor = step_executor or default_step_executor()
        self._lock = threading.RLock()
        self._started_at: Optional[float] = None

        self.state = STATE_IDLE
        self.history: List[str] = [STATE_IDLE]
        self.user_id: Optional[str] = None
        self.identity: Dict[str, str] = {}
        self.account: Optional[Account] = None
        self.usage: Optional[UsageSnapshot] = None
        self.onboarding = OnboardingState()
        self.advisory: Optional[str] = None
        self.last_error: Optional[RezzyClientError] = None
        self.retries = 0

    # Public operations

    def bootstrap(self, user_id: str, identity: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Establish the backend account, plan and onboarding state for ``user_id``."""
        if not user_id:
            raise ValueError("bootstrap requires a signed-in user id")

        with self._lock:
            if self.state == STATE_READY and self.user_id == user_id:
                return self.snapshot()

            if self.user_id != user_id:
                self.retries = 0
            self.user_id = user_id
            self.identity = _identity_fields(identity)
            return self._run()

    def retry(self) -> Dict[str, Any]:
        """Run the bootstrap sequence again after an error or degradation."""
        with self._lock:
            if self.state not in (STATE_ERRORED, STATE_DEGRADED) or not self.user_id:
                return self.snapshot()
            if self.retry_exhausted:
                _LOGGER.info("Retry budget exhausted for %s", self.user_id)
                return self.snapshot()
            self.retries += 1
            return self._run()

    def continue_limited(self, user_id: Optional[str] = None, identity: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Escape hatch: settle into degraded mode without touching the network."""
        with self._lock:
            if self.state == STATE_READY:
                return self.snapshot()
            if user_id and not self.user_id:
                self.user_id = user_id
                self.identity = _identity_fields(identity)
            self._settle_degraded(LIMITED_ADVISORY)
            return self.snapshot()

    def complete_onboarding(self, position_level: str, job_category: str) -> Dict[str, Any]:
        """Record onboarding answers locally and sync them to the backend in the background."""
        if position_level not in POSITION_LEVELS:
            raise ValueError(f"Unknown position level: {position_level!r}")
        if job_category not in JOB_CATEGORIES:
            raise ValueError(f"Unknown job category: {job_category!r}")

        with self._lock:
            if not self.user_id:
                raise RuntimeError("complete_onboarding called before bootstrap")

            self.onboarding.required = False
            self.onboarding.completed_locally = True
            onboarding_service.mark_completed_locally(self.user_id)

            profile = {
                "user_id": self.user_id,
                "first_name": self.identity.get("first_name", ""),
                "last_name": self.identity.get("last_name", ""),
                "position_level": position_level,
                "job_category": job_category,
            }
            onboarding_service.save_pending_sync(self.user_id, profile)

        executor = self._executor or default_sync_executor()
        executor.submit(self._sync_profile, profile)
        return self.snapshot()

    def refresh_usage(self) -> Optional[UsageSnapshot]:
        """Re-read plan and usage after a quota-consuming action."""
        with self._lock:
            if self.state != STATE_READY or not self.user_id:
                return self.usage
            try:
                payload = self.gateway.get_plan(self.user_id)
            except RezzyClientError as exc:
                _LOGGER.warning("Usage refresh failed for %s: %s", self.user_id, exc.kind)
                return self.usage

            self.usage = UsageSnapshot.from_payload(payload.get("usage"))
            if self.account is not None and payload.get("plan"):
                self.account.plan = normalize_plan(payload.get("plan"))
            return self.usage

    def plan_decision(self, action: str = plan_gate.ACTION_SCAN) -> PlanGateDecision:
        plan = self.account.plan if self.account else PLAN_FREE
        usage = self.usage or UsageSnapshot.empty()
        return plan_gate.check(plan, usage, action)

    @property
    def plan(self) -> str:
        return self.account.plan if self.account else PLAN_FREE

    @property
    def retry_exhausted(self) -> bool:
        return self.retries >= MAX_RETRY_ATTEMPTS

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "userId": self.user_id,
            "account": self.account.to_dict() if self.account else None,
            "usage": self.usage.to_dict() if self.usage else None,
            "onboarding": self.onboarding.to_dict(),
            "advisory": self.advisory,
            "error": self.last_error.kind if self.last_error else None,
            "retriesLeft": max(MAX_RETRY_ATTEMPTS - self.retries, 0),
            "retryExhausted": self.retry_exhausted,
        }

    # Internals

    def _transition(self, state: str) -> None:
        _LOGGER.debug("bootstrap %s: %s -> %s", self.user_id, self.state, state)
        self.state = state
        self.history.append(state)

    def _budget(self, step_timeout: float) -> float:
        """Timeout for the next call, clamped to what is left of the hard deadline."""
        elapsed = self._clock() - (self._started_at or 0.0)
        remaining = self.deadline - elapsed
        if remaining <= 0:
            raise GatewayTimeout("Setting up your account took too long.")
        return min(step_timeout, remaining)

    def _call(self, step_timeout: float, fn: Callable[..., Any], *args: Any) -> Any:
        """Run one network step and wait at most its share of the deadline.

        An abandoned call keeps running in the background; its result is dropped.
        """
        budget = self._budget(step_timeout)
        future = self._step_executor.submit(fn, *args, timeout=budget)
        try:
            return future.result(timeout=budget)
        except FutureTimeout:
            future.cancel()
            _LOGGER.warning("Bootstrap step %s for %s exceeded %.1fs", fn.__name__, self.user_id, budget)
            raise GatewayTimeout("Setting up your account took too long.") from None

    def _run(self) -> Dict[str, Any]:
        self._started_at = self._clock()
        self.advisory = None
        self.last_error = None
        completed_locally = onboarding_service.is_completed_locally(self.user_id)
        self.onboarding = OnboardingState(required=False, completed_locally=completed_locally)

        try:
            self._transition(STATE_CHECKING_BACKEND)
            self._call(HEALTH_TIMEOUT, self.gateway.health)

            self._transition(STATE_CREATING_ACCOUNT)
            created = self._call(
                ACCOUNT_TIMEOUT,
                self.gateway.create_account,
                self.user_id,
                self.identity["email"],
                self.identity["first_name"],
                self.identity["last_name"],
            )

            self._transition(STATE_FETCHING_PLAN)
            plan_payload = self._fetch_plan()
        except RezzyClientError as exc:
            _LOGGER.warning("Bootstrap for %s failed in %s: %s", self.user_id, self.state, exc.kind)
            self.last_error = exc
            self._transition(STATE_ERRORED)
            self._settle_degraded(DEGRADED_ADVISORY)
            return self.snapshot()

        self.account = self._build_account(created, plan_payload)
        self.usage = UsageSnapshot.from_payload(plan_payload.get("usage"))

        self._transition(STATE_FETCHING_PROFILE)
        self.onboarding.required = self._onboarding_required(completed_locally)

        self.retries = 0
        self._transition(STATE_READY)
        return self.snapshot()

    def _fetch_plan(self) -> Dict[str, Any]:
        try:
            return self._call(PLAN_TIMEOUT, self.gateway.get_plan, self.user_id)
        except ValidationRejected as exc:
            if exc.status_code != 404:
                raise
            _LOGGER.info("No plan record yet for %s, assuming free tier", self.user_id)
            return {}

    def _build_account(self, created: Dict[str, Any], plan_payload: Dict[str, Any]) -> Account:
        record = created.get("user") if isinstance(created.get("user"), dict) else created
        return Account(
            user_id=self.user_id,
            email=record.get("email") or self.identity["email"],
            first_name=record.get("first_name") or self.identity["first_name"],
            last_name=record.get("last_name") or self.identity["last_name"],
            plan=normalize_plan(plan_payload.get("plan") or record.get("plan")),
            created_at=record.get("created_at"),
        )

    def _onboarding_required(self, completed_locally: bool) -> bool:
        """Best-effort profile fetch; the local flag wins whenever the profile can't settle it."""
        try:
            profile = self._call(PROFILE_TIMEOUT, self.gateway.get_profile, self.user_id)
        except RezzyClientError as exc:
            if exc.status_code == 404:
                _LOGGER.info("No profile yet for %s", self.user_id)
                self._replay_pending_sync()
            else:
                _LOGGER.warning("Profile fetch failed for %s: %s", self.user_id, exc.kind)
            return not completed_locally

        if _profile_complete(profile):
            onboarding_service.clear_pending_sync(self.user_id)
            return False

        self._replay_pending_sync()
        return not completed_locally

    def _replay_pending_sync(self) -> None:
        pending = onboarding_service.get_pending_sync(self.user_id)
        if not pending:
            return
        _LOGGER.info("Replaying pending profile sync for %s", self.user_id)
        executor = self._executor or default_sync_executor()
        executor.submit(self._sync_profile, pending)

    def _sync_profile(self, profile: Dict[str, Any]) -> None:
        user_id = profile["user_id"]
        try:
            self.gateway.update_profile(
                user_id,
                profile.get("first_name", ""),
                profile.get("last_name", ""),
                profile["position_level"],
                profile["job_category"],
            )
        except RezzyClientError as exc:
            _LOGGER.warning("Profile sync for %s failed (%s); will retry on next bootstrap", user_id, exc.kind)
            return
        onboarding_service.clear_pending_sync(user_id)

    def _settle_degraded(self, advisory: str) -> None:
        self.account = Account(
            user_id=self.user_id or "",
            email=self.identity.get("email", ""),
            first_name=self.identity.get("first_name", ""),
            last_name=self.identity.get("last_name", ""),
            plan=PLAN_FREE,
        )
        self.usage = UsageSnapshot.empty()
        if self.user_id:
            self.onboarding.completed_locally = onboarding_service.is_completed_locally(self.user_id)
        self.onboarding.required = not self.onboarding.completed_locally
        self.advisory = advisory
        self._transition(STATE_DEGRADED)


def machine_for(user_id: str, gateway: GatewayClient, **kwargs: Any) -> AccountBootstrap:
    """Return the shared bootstrap machine for ``user_id``, creating it on first use."""
    machine = storage.bootstraps.get(user_id)
    if machine is None:
        machine = AccountBootstrap(gateway, **kwargs)
        storage.bootstraps[user_id] = machine
    return machine

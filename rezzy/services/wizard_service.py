"""Task wizard state machine and the catalogue of dashboard flows.

A wizard is a short, linear sequence of dependent backend calls. Each stage
keeps its own input, output, loading flag and error. A stage is reachable
only once every stage before it has an output, and changing a stage's input
throws away everything downstream of it.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from rezzy import storage
from rezzy.errors import QuotaExceeded, RezzyClientError, ValidationRejected, WizardPreconditionError
from rezzy.models import PLAN_FREE, PlanGateDecision, WizardStage
from rezzy.services import plan_gate
from rezzy.services.gateway_client import FEATURE_TIMEOUT, UPLOAD_TIMEOUT, GatewayClient

if TYPE_CHECKING:  # pragma: no cover
    from rezzy.services.bootstrap_service import AccountBootstrap

_LOGGER = logging.getLogger(__name__)

UPSELL_STAGE = "upsell"
COMPLETE_STAGE = "complete"
DEFAULT_INSTANCE = "default"

ALLOWED_RESUME_EXTENSIONS = (".pdf", ".doc", ".docx")
TIME_FILTERS = ("24h", "3d", "1w", "1m", "all")
DEFAULT_TIME_FILTER = "1w"

Fields = Dict[str, Any]
Files = Optional[Dict[str, Any]]
Builder = Callable[[Dict[str, Any], Dict[str, Any]], Tuple[Fields, Files]]


@dataclass(frozen=True)
class StageDefinition:
    name: str
    path: str
    build: Builder
    quota_key: Optional[str] = None
    timeout: float = FEATURE_TIMEOUT


@dataclass(frozen=True)
class FlowDefinition:
    name: str
    stages: Tuple[StageDefinition, ...]
    # Keyed flows run one independent instance per item (job card, application).
    keyed: bool = False

    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]


def _require(params: Dict[str, Any], key: str, message: str) -> str:
    value = params.get(key)
    if value is None or not str(value).strip():
        raise ValidationRejected(message)
    return str(value).strip()


def _ref(payload: Any, *keys: str) -> Optional[Any]:
    """Find an identifier in an opaque backend payload, looking one level deep."""
    if not isinstance(payload, dict):
        return None
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    for value in payload.values():
        if isinstance(value, dict):
            for key in keys:
                if value.get(key) is not None:
                    return value[key]
    return None


def _job_fields(params: Dict[str, Any]) -> Fields:
    return {
        "job_title": _require(params, "job_title", "Job title is required."),
        "company": _require(params, "company", "Company is required."),
        "job_description": params.get("job_description", ""),
        "job_requirements": params.get("job_requirements", ""),
    }


# Stage builders


def build_upload(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    upload = params.get("file")
    if upload is None:
        raise ValidationRejected("Please choose a resume file to upload.")

    if isinstance(upload, tuple):
        filename = upload[0]
        file_part = upload
    else:
        filename = upload.filename
        file_part = (upload.filename, upload.stream, upload.mimetype)

    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in ALLOWED_RESUME_EXTENSIONS:
        raise ValidationRejected("Please upload a PDF or Word document (.pdf, .doc, .docx).")

    return {"file_type": "resume"}, {"file": file_part}


def build_analyze(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    return (
        {
            "resume_id": _ref(upstream.get("upload"), "resume_id", "id"),
            "job_description": _require(params, "job_description", "Please paste a job description."),
            "job_title": params.get("job_title"),
            "company": params.get("company"),
        },
        None,
    )


def build_evaluate(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    return (
        {
            "resume_id": _ref(upstream.get("upload"), "resume_id", "id"),
            "analysis_id": _ref(upstream.get("analyze"), "analysis_id", "id"),
        },
        None,
    )


def build_results(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    return {"evaluation_id": _ref(upstream.get("evaluate"), "evaluation_id", "id")}, None


def build_match(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    time_filter = params.get("time_filter") or DEFAULT_TIME_FILTER
    if time_filter not in TIME_FILTERS:
        raise ValidationRejected(f"Unknown time filter: {time_filter}.")
    return {"time_filter": time_filter}, None


def build_optimize(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    """Optimize for a job picked from the match results, or for one described in ``params``."""
    job_id = params.get("job_id")
    matches = upstream.get("match")
    if job_id is not None and isinstance(matches, dict):
        for job in matches.get("jobs") or []:
            if str(job.get("id")) == str(job_id):
                return (
                    {
                        "job_title": job.get("title"),
                        "company": job.get("company"),
                        "job_description": job.get("description", ""),
                        "job_requirements": job.get("requirements", ""),
                    },
                    None,
                )
        raise ValidationRejected("That job is no longer in your match results.")
    return _job_fields(params), None


def build_cover_letter(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    fields = _job_fields(params)
    fields.pop("job_requirements")
    return fields, None


def build_interview_prep(upstream: Dict[str, Any], params: Dict[str, Any]) -> Tuple[Fields, Files]:
    fields = _job_fields(params)
    fields.pop("job_requirements")
    fields["job_application_id"] = params.get("job_application_id")
    return fields, None


_UPLOAD = StageDefinition(
    "upload", "/api/upload-resume", build_upload, quota_key=plan_gate.ACTION_SCAN, timeout=UPLOAD_TIMEOUT
)

FLOWS: Dict[str, FlowDefinition] = {
    "resume_review": FlowDefinition(
        "resume_review",
        (
            _UPLOAD,
            StageDefinition("analyze", "/api/analyze-job", build_analyze),
            StageDefinition("evaluate", "/api/evaluate-resume", build_evaluate, quota_key=plan_gate.ACTION_SCAN),
            StageDefinition("results", "/api/evaluation-results", build_results),
        ),
    ),
    "job_match": FlowDefinition(
        "job_match",
        (
            _UPLOAD,
            StageDefinition("match", "/api/match-jobs", build_match),
            StageDefinition("optimize", "/api/optimize-resume", build_optimize, quota_key=plan_gate.ACTION_SCAN),
        ),
    ),
    "optimize": FlowDefinition(
        "optimize",
        (StageDefinition("optimize", "/api/optimize-resume", build_optimize, quota_key=plan_gate.ACTION_SCAN),),
        keyed=True,
    ),
    "cover_letter": FlowDefinition(
        "cover_letter",
        (
            StageDefinition(
                "generate", "/api/generate-cover-letter", build_cover_letter, quota_key=plan_gate.ACTION_COVER_LETTER
            ),
        ),
    ),
    "interview_prep": FlowDefinition(
        "interview_prep",
        (
            StageDefinition(
                "generate",
                "/api/generate-interview-prep",
                build_interview_prep,
                quota_key=plan_gate.ACTION_INTERVIEW_QUESTIONS,
            ),
        ),
        keyed=True,
    ),
}


class TaskWizard:
    """One instance of a flow for one user. Instances never share stage state."""

    def __init__(
        self,
        flow: FlowDefinition,
        user_id: str,
        gateway: GatewayClient,
        *,
        account: Optional["AccountBootstrap"] = None,
        instance_key: str = DEFAULT_INSTANCE,
        upgrade_base_url: str = "",
    ):
        self.flow = flow
        self.user_id = user_id
        self.gateway = gateway
        self.account = account
        self.instance_key = instance_key
        self.upgrade_base_url = upgrade_base_url
        self.stages: List[WizardStage] = [WizardStage(name) for name in flow.stage_names()]
        self.upsell: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        self._generation = 0
        # Generation of the backend call still running, if any. Survives reset().
        self._in_flight: Optional[int] = None

    def _index(self, stage_name: str) -> int:
        try:
            return self.flow.stage_names().index(stage_name)
        except ValueError:
            raise WizardPreconditionError(f"{self.flow.name} has no stage {stage_name!r}") from None

    def stage(self, stage_name: str) -> WizardStage:
        return self.stages[self._index(stage_name)]

    def is_reachable(self, stage_name: str) -> bool:
        index = self._index(stage_name)
        return all(stage.done for stage in self.stages[:index])

    def current_stage(self) -> str:
        if self.upsell is not None:
            return UPSELL_STAGE
        for stage in self.stages:
            if not stage.done:
                return stage.name
        return COMPLETE_STAGE

    def reset(self, from_stage: str) -> Dict[str, Any]:
        """Clear ``from_stage`` and everything downstream of it."""
        index = self._index(from_stage)
        with self._lock:
            self._clear_from(index)
        return self.snapshot()

    def advance(self, stage_name: str, params: Optional[Dict[str, Any]] = None, *, precheck: bool = True) -> Dict[str, Any]:
        """Run ``stage_name`` against the backend using the upstream outputs and ``params``."""
        params = dict(params or {})
        index = self._index(stage_name)
        definition = self.flow.stages[index]
        stage = self.stages[index]

        with self._lock:
            if self._in_flight is not None or any(existing.loading for existing in self.stages):
                raise WizardPreconditionError(f"{self.flow.name} already has a stage in progress")
            if not self.is_reachable(stage_name):
                raise WizardPreconditionError(f"{stage_name} is not reachable yet")

            self._clear_from(index)
            stage.input = {key: value for key, value in params.items() if key != "file"}

            if precheck and definition.quota_key:
                decision = self._plan_decision(definition.quota_key)
                if not decision.allowed:
                    _LOGGER.info("%s/%s blocked by plan gate for %s", self.flow.name, stage_name, self.user_id)
                    self._enter_upsell(stage_name, decision)
                    return self.snapshot()

            stage.loading = True
            generation = self._generation
            self._in_flight = generation
            upstream = {
                earlier.name: self.stages[position].output
                for position, earlier in enumerate(self.flow.stages[:index])
            }

        try:
            fields, files = definition.build(upstream, params)
            payload = self.gateway.feature_action(
                definition.path,
                self.user_id,
                fields,
                files=files,
                timeout=definition.timeout,
            )
        except QuotaExceeded as exc:
            decision = plan_gate.on_forbidden_response(
                exc.status_code or 403, definition.quota_key or plan_gate.ACTION_SCAN
            )
            with self._lock:
                if self._settle(stage, generation):
                    self._enter_upsell(stage_name, decision, message=exc.message)
            return self.snapshot()
        except RezzyClientError as exc:
            _LOGGER.warning("%s/%s failed for %s: %s", self.flow.name, stage_name, self.user_id, exc.kind)
            with self._lock:
                if self._settle(stage, generation):
                    stage.error = exc.message
                    stage.error_kind = exc.kind
            return self.snapshot()
        except Exception:
            with self._lock:
                self._settle(stage, generation)
            raise

        with self._lock:
            if not self._settle(stage, generation):
                _LOGGER.info("Discarding stale %s/%s result after reset", self.flow.name, stage_name)
                return self.snapshot()
            stage.output = payload

        if definition.quota_key and self.account is not None:
            self.account.refresh_usage()
        return self.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "flow": self.flow.name,
            "instance": self.instance_key,
            "current": self.current_stage(),
            "stages": [stage.to_dict() for stage in self.stages],
            "reachable": {stage.name: self.is_reachable(stage.name) for stage in self.stages},
            "upsell": self.upsell,
        }

    def _plan_decision(self, action: str) -> PlanGateDecision:
        if self.account is None:
            return PlanGateDecision(allowed=True, reason="withinQuota", action=action)
        return self.account.plan_decision(action)

    def _enter_upsell(self, stage_name: str, decision: PlanGateDecision, message: Optional[str] = None) -> None:
        plan = self.account.plan if self.account is not None else PLAN_FREE
        self.upsell = {
            "stage": stage_name,
            "message": message or QuotaExceeded.default_message,
            **plan_gate.upsell_payload(decision, plan, self.upgrade_base_url),
        }

    def _settle(self, stage: WizardStage, generation: int) -> bool:
        """Finish the in-flight call; True when its result still belongs to the stage."""
        if self._in_flight == generation:
            self._in_flight = None
        if generation != self._generation:
            return False
        stage.loading = False
        return True

    def _clear_from(self, index: int) -> None:
        for stage in self.stages[index:]:
            stage.clear()
        self.upsell = None
        self._generation += 1


def get_flow(flow_name: str) -> FlowDefinition:
    try:
        return FLOWS[flow_name]
    except KeyError:
        raise KeyError(f"Unknown flow: {flow_name}") from None


def wizard_for(
    user_id: str,
    flow_name: str,
    gateway: GatewayClient,
    *,
    instance_key: Optional[str] = None,
    account: Optional["AccountBootstrap"] = None,
    upgrade_base_url: str = "",
) -> TaskWizard:
    """Return the wizard instance for ``(user_id, flow_name, instance_key)``, creating it on first use."""
    flow = get_flow(flow_name)
    if flow.keyed and not instance_key:
        raise WizardPreconditionError(f"{flow_name} needs an instance key")
    key = (user_id, flow_name, str(instance_key or DEFAULT_INSTANCE))

    wizard = storage.wizards.get(key)
    if wizard is None:
        wizard = TaskWizard(
            flow,
            user_id,
            gateway,
            account=account,
            instance_key=key[2],
            upgrade_base_url=upgrade_base_url,
        )
        storage.wizards[key] = wizard
    return wizard

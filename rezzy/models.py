"""Plain data records shared by the state machines and routes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PLAN_FREE = "free"
PLAN_STARTER = "starter"
PLAN_PREMIUM = "premium"
PLANS = (PLAN_FREE, PLAN_STARTER, PLAN_PREMIUM)

# Marketing names the backend has used for the same tiers.
_PLAN_ALIASES = {"pro": PLAN_PREMIUM, "elite": PLAN_PREMIUM}

REASON_WITHIN_QUOTA = "withinQuota"
REASON_UNLIMITED_PLAN = "unlimitedPlan"
REASON_QUOTA_EXCEEDED = "quotaExceeded"


def current_month() -> str:
    """Return the current UTC month as ``YYYY-MM``."""
    return datetime.now(timezone.utc).strftime("%Y-%m")


def normalize_plan(value: Optional[str]) -> str:
    plan = (value or "").strip().lower()
    plan = _PLAN_ALIASES.get(plan, plan)
    return plan if plan in PLANS else PLAN_FREE


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _optional_count(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return None


@dataclass
class Session:
    user_id: Optional[str] = None
    is_ready: bool = False
    email: str = ""
    first_name: str = ""
    last_name: str = ""

    @property
    def signed_in(self) -> bool:
        return self.is_ready and bool(self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "isReady": self.is_ready}


@dataclass
class Account:
    user_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    plan: str = PLAN_FREE
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "plan": self.plan,
            "createdAt": self.created_at,
        }


@dataclass
class UsageSnapshot:
    scans_used: int = 0
    month: str = ""
    cover_letters_generated: Optional[int] = None
    interview_questions_generated: Optional[int] = None

    @classmethod
    def empty(cls) -> "UsageSnapshot":
        return cls(scans_used=0, month=current_month())

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "UsageSnapshot":
        """Build a snapshot from a backend usage object (snake or camel case)."""
        payload = payload or {}
        return cls(
            scans_used=_optional_count(_pick(payload, "scans_used", "scansUsed")) or 0,
            month=str(_pick(payload, "month") or current_month()),
            cover_letters_generated=_optional_count(
                _pick(payload, "cover_letters_generated", "coverLettersGenerated")
            ),
            interview_questions_generated=_optional_count(
                _pick(payload, "interview_questions_generated", "interviewQuestionsGenerated")
            ),
        )

    def count_for(self, action: str) -> int:
        if action == "cover_letter":
            return self.cover_letters_generated or 0
        if action == "interview_questions":
            return self.interview_questions_generated or 0
        return self.scans_used

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"scansUsed": self.scans_used, "month": self.month}
        if self.cover_letters_generated is not None:
            data["coverLettersGenerated"] = self.cover_letters_generated
        if self.interview_questions_generated is not None:
            data["interviewQuestionsGenerated"] = self.interview_questions_generated
        return data


@dataclass
class OnboardingState:
    required: bool = False
    completed_locally: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"required": self.required, "completedLocally": self.completed_locally}


@dataclass
class WizardStage:
    name: str
    input: Optional[Dict[str, Any]] = None
    output: Any = None
    loading: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.output is not None

    def clear(self) -> None:
        self.input = None
        self.output = None
        self.loading = False
        self.error = None
        self.error_kind = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "output": self.output,
            "loading": self.loading,
            "error": self.error,
            "errorKind": self.error_kind,
        }


@dataclass(frozen=True)
class PlanGateDecision:
    allowed: bool
    reason: str
    action: str = "scan"
    limit: Optional[int] = None
    used: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "action": self.action,
            "limit": self.limit,
            "used": self.used,
        }

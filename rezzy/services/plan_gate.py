"""Usage/plan gate deciding whether a quota-consuming action may proceed.

The gate is advisory: the backend stays authoritative, so a 403 from any gated
endpoint is still interpreted here through :func:`on_forbidden_response`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from rezzy.models import (
    PLAN_FREE,
    PLAN_PREMIUM,
    PLAN_STARTER,
    REASON_QUOTA_EXCEEDED,
    REASON_UNLIMITED_PLAN,
    REASON_WITHIN_QUOTA,
    PlanGateDecision,
    UsageSnapshot,
    normalize_plan,
)

ACTION_SCAN = "scan"
ACTION_COVER_LETTER = "cover_letter"
ACTION_INTERVIEW_QUESTIONS = "interview_questions"

FREE_SCANS_PER_MONTH = 5

# Monthly limits per plan; None means unlimited.
PLAN_QUOTAS: Dict[str, Dict[str, Optional[int]]] = {
    PLAN_FREE: {
        ACTION_SCAN: FREE_SCANS_PER_MONTH,
        ACTION_COVER_LETTER: 0,
        ACTION_INTERVIEW_QUESTIONS: 0,
    },
    PLAN_STARTER: {
        ACTION_SCAN: None,
        ACTION_COVER_LETTER: 0,
        ACTION_INTERVIEW_QUESTIONS: 0,
    },
    PLAN_PREMIUM: {
        ACTION_SCAN: None,
        ACTION_COVER_LETTER: None,
        ACTION_INTERVIEW_QUESTIONS: None,
    },
}

UPGRADE_PATH = "/upgrade"


def check(plan: str, usage: UsageSnapshot, action: str = ACTION_SCAN) -> PlanGateDecision:
    """Return whether ``action`` is permitted for ``plan`` given ``usage``."""
    limits = PLAN_QUOTAS[normalize_plan(plan)]
    limit = limits.get(action)
    used = usage.count_for(action)

    if limit is None:
        return PlanGateDecision(allowed=True, reason=REASON_UNLIMITED_PLAN, action=action, used=used)
    if used < limit:
        return PlanGateDecision(allowed=True, reason=REASON_WITHIN_QUOTA, action=action, limit=limit, used=used)
    return PlanGateDecision(allowed=False, reason=REASON_QUOTA_EXCEEDED, action=action, limit=limit, used=used)


def on_forbidden_response(status_code: Optional[int], action: str = ACTION_SCAN) -> Optional[PlanGateDecision]:
    """Map a 403 from any gated endpoint to a quota-exceeded decision."""
    if status_code != 403:
        return None
    return PlanGateDecision(allowed=False, reason=REASON_QUOTA_EXCEEDED, action=action)


def suggested_plan(plan: str, action: str) -> str:
    """Cheapest tier that lifts the limit on ``action``."""
    current = normalize_plan(plan)
    for candidate in (PLAN_STARTER, PLAN_PREMIUM):
        if candidate == current:
            continue
        if PLAN_QUOTAS[candidate].get(action, None) is None:
            return candidate
    return PLAN_PREMIUM


def upsell_payload(decision: PlanGateDecision, plan: str, app_base_url: str = "") -> Dict[str, Any]:
    """Build the upsell interstitial contract shared by every surface."""
    return {
        "reason": decision.reason,
        "action": decision.action,
        "plan": normalize_plan(plan),
        "suggestedPlan": suggested_plan(plan, decision.action),
        "limit": decision.limit,
        "used": decision.used,
        "upgradeUrl": f"{app_base_url.rstrip('/')}{UPGRADE_PATH}",
    }

"""Tests for the usage/plan gate."""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rezzy.models import UsageSnapshot  # noqa: E402
from rezzy.services import plan_gate  # noqa: E402


def usage(scans: int = 0, **extra) -> UsageSnapshot:
    return UsageSnapshot(scans_used=scans, month="2024-05", **extra)


def test_free_plan_at_quota_is_blocked():
    decision = plan_gate.check("free", usage(5), "scan")

    assert decision.allowed is False
    assert decision.reason == "quotaExceeded"
    assert decision.limit == plan_gate.FREE_SCANS_PER_MONTH


def test_free_plan_under_quota_is_allowed():
    decision = plan_gate.check("free", usage(2), "scan")

    assert decision.allowed is True
    assert decision.reason == "withinQuota"
    assert decision.used == 2


def test_paid_plans_have_unlimited_scans():
    for plan in ("starter", "premium"):
        decision = plan_gate.check(plan, usage(500), "scan")
        assert decision.allowed is True
        assert decision.reason == "unlimitedPlan"


def test_cover_letters_need_premium():
    assert plan_gate.check("starter", usage(), "cover_letter").allowed is False
    assert plan_gate.check("premium", usage(cover_letters_generated=40), "cover_letter").allowed is True


def test_unknown_plan_is_treated_as_free():
    assert plan_gate.check("platinum", usage(5), "scan").allowed is False
    assert plan_gate.check("elite", usage(5), "scan").reason == "unlimitedPlan"


def test_forbidden_response_maps_to_quota_exceeded():
    decision = plan_gate.on_forbidden_response(403, "interview_questions")

    assert decision.allowed is False
    assert decision.reason == "quotaExceeded"
    assert decision.action == "interview_questions"
    assert plan_gate.on_forbidden_response(404) is None
    assert plan_gate.on_forbidden_response(500) is None


def test_upsell_payload_suggests_cheapest_unlocking_plan():
    scan_block = plan_gate.check("free", usage(5), "scan")
    letter_block = plan_gate.check("starter", usage(), "cover_letter")

    scan_upsell = plan_gate.upsell_payload(scan_block, "free", "https://rezzy.test/")
    letter_upsell = plan_gate.upsell_payload(letter_block, "starter")

    assert scan_upsell["suggestedPlan"] == "starter"
    assert scan_upsell["upgradeUrl"] == "https://rezzy.test/upgrade"
    assert letter_upsell["suggestedPlan"] == "premium"

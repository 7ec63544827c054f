"""/api/billing routes for plan upgrades and subscription management."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from rezzy.models import PLAN_PREMIUM, PLAN_STARTER, normalize_plan
from rezzy.utils.auth import require_session
from rezzy.utils.context import account_for, get_gateway, request_payload

bp = Blueprint("billing", __name__, url_prefix="/api/billing")

CHECKOUT_URL = "https://checkout.stripe.com/pay/{session_id}"
PAID_PLANS = (PLAN_STARTER, PLAN_PREMIUM)


def _requested_plan():
    payload = request_payload()
    raw = str(payload.get("plan") or "").strip().lower()
    plan = normalize_plan(raw)
    if not raw or plan not in PAID_PLANS:
        return None
    return plan


@bp.post("/checkout")
def create_checkout():
    """Create a payment checkout session and return where to redirect the user."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    plan = _requested_plan()
    if plan is None:
        return jsonify(error="Choose a paid plan to upgrade to."), 400

    base_url = current_app.config["APP_BASE_URL"]
    data = get_gateway().create_checkout(
        session.user_id,
        plan,
        success_url=f"{base_url}/dashboard?upgrade=success",
        cancel_url=f"{base_url}/upgrade",
    )
    session_id = data.get("session_id")
    if not session_id:
        return jsonify(error="Error creating checkout session."), 502

    current_app.logger.info("Checkout session created for %s (%s)", session.user_id, plan)
    return (
        jsonify(
            sessionId=session_id,
            redirectUrl=data.get("url") or CHECKOUT_URL.format(session_id=session_id),
        ),
        200,
    )


@bp.post("/upgrade")
def upgrade_subscription():
    """Switch an existing subscription to another paid plan."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    plan = _requested_plan()
    if plan is None:
        return jsonify(error="Choose a paid plan to upgrade to."), 400

    data = get_gateway().upgrade_subscription(session.user_id, plan)
    if not data.get("success") or not data.get("session_id"):
        return jsonify(error="Error creating checkout session."), 502

    return (
        jsonify(
            sessionId=data["session_id"],
            redirectUrl=CHECKOUT_URL.format(session_id=data["session_id"]),
        ),
        200,
    )


@bp.get("/subscription")
def get_subscription():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    data = get_gateway().get_subscription(session.user_id)
    return (
        jsonify(
            plan=normalize_plan(data.get("plan")),
            subscription=data.get("subscription"),
            customerId=data.get("customer_id"),
        ),
        200,
    )


@bp.post("/cancel")
def cancel_subscription():
    """Cancel at period end and refresh the cached plan."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    data = get_gateway().cancel_subscription(session.user_id)
    if not data.get("success"):
        return jsonify(error="Error cancelling subscription."), 502

    account_for(session).refresh_usage()
    return jsonify(success=True), 200

"""/api/account routes exposing the bootstrap machine and plan gate."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from rezzy.services import plan_gate
from rezzy.utils.auth import identity_of, require_session
from rezzy.utils.context import account_for, request_payload

bp = Blueprint("account", __name__, url_prefix="/api/account")


@bp.get("")
def get_account():
    """Return the cached bootstrap state without touching the backend."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    return jsonify(account_for(session).snapshot()), 200


@bp.post("/bootstrap")
def bootstrap_account():
    """Create-or-get the backend account and load plan, usage and onboarding state."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    snapshot = account_for(session).bootstrap(session.user_id, identity_of(session))
    return jsonify(snapshot), 200


@bp.post("/retry")
def retry_bootstrap():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    return jsonify(account_for(session).retry()), 200


@bp.post("/continue-limited")
def continue_limited():
    """Skip further retries and use the dashboard with synthesised defaults."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    snapshot = account_for(session).continue_limited(session.user_id, identity_of(session))
    return jsonify(snapshot), 200


@bp.post("/onboarding")
def complete_onboarding():
    """Finish onboarding locally; the backend profile update happens in the background."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    payload = request_payload()
    position_level = str(payload.get("positionLevel") or payload.get("position_level") or "").strip()
    job_category = str(payload.get("jobCategory") or payload.get("job_category") or "").strip()
    if not position_level or not job_category:
        return jsonify(error="Please select both position level and job category."), 400

    machine = account_for(session)
    if machine.user_id is None:
        return jsonify(error="Account has not been bootstrapped yet."), 409

    try:
        snapshot = machine.complete_onboarding(position_level, job_category)
    except ValueError as exc:
        return jsonify(error=str(exc)), 400

    current_app.logger.info("Onboarding completed for %s", session.user_id)
    return jsonify(snapshot), 200


@bp.post("/usage/refresh")
def refresh_usage():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    machine = account_for(session)
    machine.refresh_usage()
    return jsonify(machine.snapshot()), 200


@bp.get("/plan-check")
def plan_check():
    """Advisory pre-check for a quota-consuming action."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    action = request.args.get("action", plan_gate.ACTION_SCAN)
    machine = account_for(session)
    decision = machine.plan_decision(action)

    body = {"decision": decision.to_dict()}
    if not decision.allowed:
        body["upsell"] = plan_gate.upsell_payload(decision, machine.plan, current_app.config["APP_BASE_URL"])
    return jsonify(body), 200

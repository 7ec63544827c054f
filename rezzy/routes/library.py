"""/api routes for job recommendations and previously generated material."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from rezzy.services import plan_gate
from rezzy.services.wizard_service import DEFAULT_TIME_FILTER, TIME_FILTERS
from rezzy.utils.auth import require_session
from rezzy.utils.context import account_for, get_gateway, request_payload

bp = Blueprint("library", __name__, url_prefix="/api")

RECOMMENDATION_FIELDS = ("job_title", "company", "job_description", "job_requirements")


@bp.get("/recommendations")
def job_recommendations():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    time_filter = request.args.get("time_filter") or DEFAULT_TIME_FILTER
    if time_filter not in TIME_FILTERS:
        return jsonify(error=f"Unknown time filter: {time_filter}."), 400

    data = get_gateway().job_recommendations(session.user_id, time_filter)
    return jsonify(recommendations=data.get("recommendations") or [], timeFilter=time_filter), 200


@bp.post("/recommendations/optimized-resume")
def generate_optimized_resume():
    """Tailor the current resume to a recommended job; consumes a scan."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    payload = request_payload()
    if not payload.get("job_title") or not payload.get("company"):
        return jsonify(error="Job title and company are required."), 400

    machine = account_for(session)
    decision = machine.plan_decision(plan_gate.ACTION_SCAN)
    if not decision.allowed:
        upsell = plan_gate.upsell_payload(decision, machine.plan, current_app.config["APP_BASE_URL"])
        return jsonify(error="quota_exceeded", upsell=upsell), 402

    fields = {key: payload.get(key) for key in RECOMMENDATION_FIELDS}
    data = get_gateway().feature_action("/api/generate-optimized-resume", session.user_id, fields)
    machine.refresh_usage()
    return jsonify(data), 200


@bp.get("/optimized-resumes")
def optimized_resumes():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    data = get_gateway().list_optimized_resumes(session.user_id)
    return jsonify(resumes=data.get("resumes") or data.get("items") or []), 200


@bp.get("/interview-preparations")
def interview_preparations():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    data = get_gateway().list_interview_preparations(session.user_id)
    return jsonify(preparations=data.get("preparations") or data.get("items") or []), 200

"""/api/tracker routes proxying the job application tracker."""

from __future__ import annotations

from flask import Blueprint, jsonify

from rezzy.utils.auth import require_session
from rezzy.utils.context import get_gateway, request_payload

bp = Blueprint("tracker", __name__, url_prefix="/api/tracker")

APPLICATION_STATUSES = ("applied", "phone_screen", "onsite", "offer", "rejected")
TRACKER_FIELDS = ("job_title", "company", "location", "job_url", "job_description", "notes")


@bp.get("")
def list_applications():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    data = get_gateway().list_applications(session.user_id)
    return jsonify(applications=data.get("applications") or data.get("items") or []), 200


@bp.post("")
def add_application():
    """Track a job, typically one picked from the job matcher."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    payload = request_payload()
    if not payload.get("job_title") or not payload.get("company"):
        return jsonify(error="Job title and company are required."), 400

    fields = {key: payload.get(key) for key in TRACKER_FIELDS}
    return jsonify(get_gateway().add_application(session.user_id, fields)), 200


@bp.put("/<application_id>")
def update_application(application_id: str):
    """Edit the details of a tracked application."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    payload = request_payload()
    if not payload.get("job_title") or not payload.get("company"):
        return jsonify(error="Job title and company are required."), 400

    fields = {key: payload.get(key) for key in TRACKER_FIELDS}
    return jsonify(get_gateway().update_application(application_id, session.user_id, fields)), 200


@bp.put("/<application_id>/status")
def update_status(application_id: str):
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    status = str(request_payload().get("status") or "").strip().lower()
    if status not in APPLICATION_STATUSES:
        return jsonify(error=f"Unknown status: {status or '(empty)'}."), 400

    return jsonify(get_gateway().update_application_status(application_id, status)), 200


@bp.delete("/<application_id>")
def delete_application(application_id: str):
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    get_gateway().delete_application(application_id)
    return jsonify(success=True), 200

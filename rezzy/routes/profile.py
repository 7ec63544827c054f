"""/api/profile routes for viewing and editing the backend profile."""

from __future__ import annotations

from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file

from rezzy.services import onboarding_service
from rezzy.services.bootstrap_service import JOB_CATEGORIES, POSITION_LEVELS
from rezzy.services.gateway_client import UPLOAD_TIMEOUT
from rezzy.services.wizard_service import build_upload
from rezzy.utils.auth import require_session
from rezzy.utils.context import get_gateway, request_payload

bp = Blueprint("profile", __name__, url_prefix="/api/profile")

PROFILE_FIELDS = ("first_name", "middle_name", "last_name", "position_level", "job_category")


@bp.get("")
def get_profile():
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    return jsonify(get_gateway().get_profile(session.user_id)), 200


@bp.put("")
def update_profile():
    """Save profile edits made after onboarding and return the refreshed profile."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    payload = request_payload()
    fields = {key: str(payload.get(key) or "").strip() for key in PROFILE_FIELDS}
    if fields["position_level"] not in POSITION_LEVELS:
        return jsonify(error="Please choose a valid position level."), 400
    if fields["job_category"] not in JOB_CATEGORIES:
        return jsonify(error="Please choose a valid job category."), 400

    gateway = get_gateway()
    gateway.update_profile(
        session.user_id,
        fields["first_name"],
        fields["last_name"],
        fields["position_level"],
        fields["job_category"],
        middle_name=fields["middle_name"],
    )
    # A saved profile supersedes any onboarding answers still waiting to sync.
    onboarding_service.mark_completed_locally(session.user_id)
    onboarding_service.clear_pending_sync(session.user_id)

    current_app.logger.info("Profile updated for %s", session.user_id)
    return jsonify(gateway.get_profile(session.user_id)), 200


@bp.post("/resume")
def replace_resume():
    """Upload a new current resume."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    fields, files = build_upload({}, {"file": request.files.get("file")})
    data = get_gateway().feature_action(
        "/api/upload-resume",
        session.user_id,
        fields,
        files=files,
        timeout=UPLOAD_TIMEOUT,
    )
    return jsonify(data), 200


@bp.get("/resume/<resume_id>/download")
def download_resume(resume_id: str):
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    response = get_gateway().download(f"/api/download-resume/{resume_id}", session.user_id)
    return send_file(
        BytesIO(response.content),
        mimetype=response.headers.get("Content-Type", "application/pdf"),
        as_attachment=True,
        download_name=request.args.get("filename") or f"resume-{resume_id}.pdf",
    )

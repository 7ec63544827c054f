"""/api/wizards routes driving multi-step dashboard flows."""

from __future__ import annotations

from io import BytesIO
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, current_app, jsonify, request, send_file

from rezzy.services import wizard_service
from rezzy.services.bootstrap_service import STATE_DEGRADED, STATE_READY
from rezzy.services.wizard_service import TaskWizard
from rezzy.utils.auth import require_session
from rezzy.utils.context import account_for, get_gateway, request_payload

bp = Blueprint("wizards", __name__, url_prefix="/api")


def _load_wizard(flow: str) -> Tuple[Optional[TaskWizard], Optional[Any]]:
    session, error_response = require_session()
    if error_response is not None:
        return None, error_response

    if flow not in wizard_service.FLOWS:
        return None, (jsonify(error=f"Unknown flow: {flow}"), 404)

    account = account_for(session)
    if account.state not in (STATE_READY, STATE_DEGRADED):
        return None, (jsonify(error="Account has not been bootstrapped yet."), 409)

    wizard = wizard_service.wizard_for(
        session.user_id,
        flow,
        get_gateway(),
        instance_key=request.args.get("instance"),
        account=account,
        upgrade_base_url=current_app.config["APP_BASE_URL"],
    )
    return wizard, None


@bp.get("/wizards/<flow>")
def get_wizard(flow: str):
    wizard, error_response = _load_wizard(flow)
    if error_response is not None:
        return error_response
    return jsonify(wizard.snapshot()), 200


@bp.post("/wizards/<flow>/stages/<stage>")
def advance_stage(flow: str, stage: str):
    """Run one stage; stage failures are reported inside the returned state."""
    wizard, error_response = _load_wizard(flow)
    if error_response is not None:
        return error_response

    params: Dict[str, Any] = request_payload()
    if "file" in request.files:
        params["file"] = request.files["file"]

    return jsonify(wizard.advance(stage, params)), 200


@bp.post("/wizards/<flow>/reset")
def reset_wizard(flow: str):
    """Clear a stage and everything downstream of it."""
    wizard, error_response = _load_wizard(flow)
    if error_response is not None:
        return error_response

    payload = request_payload()
    from_stage = payload.get("fromStage") or wizard.flow.stages[0].name
    return jsonify(wizard.reset(from_stage)), 200


@bp.get("/downloads/optimized-resume/<resume_id>")
def download_optimized_resume(resume_id: str):
    """Stream an optimized resume PDF from the backend."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    response = get_gateway().download(f"/api/download-optimized-resume/{resume_id}", session.user_id)
    return send_file(
        BytesIO(response.content),
        mimetype=response.headers.get("Content-Type", "application/pdf"),
        as_attachment=True,
        download_name=f"optimized-resume-{resume_id}.pdf",
    )

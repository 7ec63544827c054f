"""/api/auth routes bridging the identity provider to dashboard sessions."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from rezzy.utils.auth import (
    bearer_token,
    current_session,
    issue_session,
    require_session,
    revoke_session,
)
from rezzy.utils.context import request_payload

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@bp.post("/sign-in")
def sign_in():
    """Issue a session token for an identity the auth provider has already verified."""
    payload = request_payload()
    user_id = str(payload.get("userId") or payload.get("user_id") or "").strip()
    if not user_id:
        return jsonify(error="userId is required."), 400

    record = issue_session(
        user_id,
        email=str(payload.get("email") or "").strip(),
        first_name=str(payload.get("firstName") or payload.get("first_name") or "").strip(),
        last_name=str(payload.get("lastName") or payload.get("last_name") or "").strip(),
    )
    current_app.logger.info("Signed in %s", user_id)

    return (
        jsonify(
            token=record["token"],
            userId=record["user_id"],
            expiresAt=record["expires_at"] * 1000,
        ),
        200,
    )


@bp.post("/sign-out")
def sign_out():
    """Revoke the current token along with the user's cached dashboard state."""
    session, error_response = require_session()
    if error_response is not None:
        return error_response

    revoke_session(bearer_token())
    current_app.logger.info("Signed out %s", session.user_id)
    return jsonify(success=True), 200


@bp.get("/session")
def get_session_info():
    """Return the polled session value for the presentation layer."""
    return jsonify(current_session().to_dict()), 200

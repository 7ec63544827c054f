"""Identity provider adapter: session tokens bound to a signed-in user."""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from rezzy.models import Session
from rezzy.storage import forget_user, sessions

# Session expiry window (seconds).
SESSION_TTL_SECONDS = 24 * 60 * 60


def now_seconds() -> int:
    """Return the current UNIX timestamp in seconds."""
    return int(time.time())


def generate_token(prefix: str = "sess") -> str:
    """Return a random token with the given prefix suitable for in-memory keys."""
    return f"{prefix}_{secrets.token_urlsafe(24)}"


def issue_session(user_id: str, email: str = "", first_name: str = "", last_name: str = "") -> Dict[str, Any]:
    """Bind a new token to the identity forwarded by the auth provider."""
    token = generate_token("sess")
    record = {
        "token": token,
        "user_id": user_id,
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "issued_at": now_seconds(),
        "expires_at": now_seconds() + SESSION_TTL_SECONDS,
    }
    sessions[token] = record
    return record


def revoke_session(token: str) -> Optional[Dict[str, Any]]:
    """Drop a token and, when it was the user's last one, their cached state."""
    record = sessions.pop(token, None)
    if record is None:
        return None
    if not any(other["user_id"] == record["user_id"] for other in sessions.values()):
        forget_user(record["user_id"])
    return record


def prune_expired() -> None:
    """Remove stale sessions from in-memory storage."""
    current = now_seconds()
    for token, record in list(sessions.items()):
        if record["expires_at"] <= current:
            revoke_session(token)


def bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return ""
    return auth_header[7:].strip()


def current_session() -> Session:
    """Return the polled session value; signed out when there is no valid token."""
    record = sessions.get(bearer_token())
    if not record or record["expires_at"] <= now_seconds():
        return Session(user_id=None, is_ready=True)
    return Session(
        user_id=record["user_id"],
        is_ready=True,
        email=record.get("email", ""),
        first_name=record.get("first_name", ""),
        last_name=record.get("last_name", ""),
    )


def require_session() -> Tuple[Optional[Session], Optional[Any]]:
    """Validate the Bearer token from the request and return the associated session."""
    token = bearer_token()
    if not token:
        return None, (jsonify(error="Missing authorization token."), 401)

    record = sessions.get(token)
    if not record:
        return None, (jsonify(error="Invalid or expired session."), 401)

    if record["expires_at"] <= now_seconds():
        revoke_session(token)
        return None, (jsonify(error="Session expired."), 401)

    session = current_session()
    return session, None


def identity_of(session: Session) -> Dict[str, str]:
    return {
        "email": session.email,
        "first_name": session.first_name,
        "last_name": session.last_name,
    }


def register_session_cleanup(app: Flask) -> None:
    """Attach a before-request handler that keeps session state tidy."""

    @app.before_request  # pragma: no cover - trivial wiring
    def _cleanup_state() -> None:
        prune_expired()

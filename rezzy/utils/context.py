"""Per-app shared collaborators looked up from Flask's extension registry."""

from __future__ import annotations

from typing import Any, Dict

from flask import current_app, request

from rezzy.models import Session
from rezzy.services import bootstrap_service
from rezzy.services.bootstrap_service import AccountBootstrap
from rezzy.services.gateway_client import GatewayClient

GATEWAY_EXTENSION = "rezzy.gateway"
SYNC_EXECUTOR_EXTENSION = "rezzy.sync_executor"


def get_gateway() -> GatewayClient:
    """Return the app's gateway client, creating it from config on first use."""
    client = current_app.extensions.get(GATEWAY_EXTENSION)
    if client is None:
        client = GatewayClient(current_app.config["REZZY_API_URL"])
        current_app.extensions[GATEWAY_EXTENSION] = client
    return client


def account_for(session: Session) -> AccountBootstrap:
    """Return the bootstrap machine shared by every surface for this user."""
    return bootstrap_service.machine_for(
        session.user_id,
        get_gateway(),
        deadline=current_app.config["BOOTSTRAP_DEADLINE"],
        executor=current_app.extensions.get(SYNC_EXECUTOR_EXTENSION),
    )


def request_payload() -> Dict[str, Any]:
    """Return request fields from a JSON body or a form-encoded/multipart body."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()

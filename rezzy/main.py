"""Flask application setup and blueprint wiring."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from pymongo.errors import PyMongoError

from rezzy import database, storage
from rezzy.config import load_settings
from rezzy.errors import QuotaExceeded, RezzyClientError, WizardPreconditionError
from rezzy.models import PLAN_FREE
from rezzy.routes import register_routes
from rezzy.services import bootstrap_service, plan_gate
from rezzy.utils.auth import current_session, register_session_cleanup
from rezzy.utils.context import SYNC_EXECUTOR_EXTENSION

UPLOAD_LIMIT_BYTES = 5 * 1024 * 1024  # 5 MB per request

# HTTP status used when a classified backend failure escapes a route.
ERROR_STATUS = {
    "backend_unavailable": 503,
    "timeout": 504,
    "quota_exceeded": 402,
    "validation_rejected": 400,
    "server_fault": 502,
}


def register_error_handlers(app: Flask) -> None:
    """Render classified errors uniformly; a quota error always carries the upsell contract."""

    @app.errorhandler(RezzyClientError)
    def _classified_error(exc: RezzyClientError):
        body = exc.to_dict()
        if isinstance(exc, QuotaExceeded):
            session = current_session()
            machine = storage.bootstraps.get(session.user_id) if session.user_id else None
            plan = machine.plan if machine is not None else PLAN_FREE
            decision = plan_gate.on_forbidden_response(exc.status_code or 403)
            body["upsell"] = plan_gate.upsell_payload(decision, plan, app.config["APP_BASE_URL"])
        app.logger.warning("Backend call failed: %s (%s)", exc.kind, exc.status_code)
        return jsonify(body), ERROR_STATUS.get(exc.kind, 502)

    @app.errorhandler(WizardPreconditionError)
    def _precondition_error(exc: WizardPreconditionError):
        app.logger.error("Wizard precondition violated: %s", exc)
        return jsonify(error="precondition_failed", message=str(exc)), 409


def create_app(overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Configure and return the Flask application instance."""
    app = Flask(__name__)
    app.config.update(load_settings())
    if overrides:
        app.config.update(overrides)

    app.logger.setLevel(logging.INFO)
    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})

    app.config["MAX_CONTENT_LENGTH"] = UPLOAD_LIMIT_BYTES
    app.extensions.setdefault(SYNC_EXECUTOR_EXTENSION, bootstrap_service.default_sync_executor())

    register_session_cleanup(app)
    register_error_handlers(app)
    register_routes(app)

    database.configure(app.config["ENABLE_MONGODB"])

    # Initialize MongoDB indexes if enabled
    if database.mongodb_enabled():
        try:
            from rezzy.services import onboarding_service
            onboarding_service.create_indexes()
            app.logger.info("MongoDB indexes created successfully")
        except PyMongoError as e:
            app.logger.warning(f"Failed to create MongoDB indexes: {e}")

    return app

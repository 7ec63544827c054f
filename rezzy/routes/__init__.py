"""Blueprint registration helper."""

from __future__ import annotations

from flask import Flask, jsonify

from .account import bp as account_bp
from .auth import bp as auth_bp
from .billing import bp as billing_bp
from .library import bp as library_bp
from .profile import bp as profile_bp
from .tracker import bp as tracker_bp
from .wizards import bp as wizards_bp


def register_routes(app: Flask) -> None:
    """Register all application blueprints on the provided Flask app."""
    app.register_blueprint(auth_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(wizards_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(tracker_bp)
    app.register_blueprint(library_bp)

    @app.get("/")
    def index():
        return jsonify(message="Hello from the Rezzy dashboard API"), 200

"""Environment-driven settings for the dashboard service."""

from __future__ import annotations

import os
from typing import Any, Dict, List

DEFAULT_API_URL = "http://127.0.0.1:8000"
DEFAULT_APP_BASE_URL = "http://localhost:3000"

# Page-level ceiling for a whole bootstrap run (seconds).
DEFAULT_BOOTSTRAP_DEADLINE = 15.0


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_origins(value: str) -> List[str]:
    origins = [origin.strip() for origin in (value or "").split(",") if origin.strip()]
    return origins or ["*"]


def load_settings() -> Dict[str, Any]:
    """Read settings from the environment into a Flask config mapping."""
    return {
        "REZZY_API_URL": (os.getenv("REZZY_API_URL") or DEFAULT_API_URL).rstrip("/"),
        "APP_BASE_URL": (os.getenv("APP_BASE_URL") or DEFAULT_APP_BASE_URL).rstrip("/"),
        "ENABLE_MONGODB": env_flag("ENABLE_MONGODB", False),
        "BOOTSTRAP_DEADLINE": float(os.getenv("REZZY_BOOTSTRAP_DEADLINE") or DEFAULT_BOOTSTRAP_DEADLINE),
        "CORS_ORIGINS": parse_origins(os.getenv("REZZY_CORS_ORIGINS", "")),
    }

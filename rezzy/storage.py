"""In-memory data stores backing per-process session state."""

from typing import Any, Dict, Tuple

# Active session tokens mapped to the identity they were issued for.
sessions: Dict[str, Dict[str, Any]] = {}

# Account bootstrap machines keyed by user id.
bootstraps: Dict[str, Any] = {}

# Task wizard instances keyed by (user id, flow, instance key).
wizards: Dict[Tuple[str, str, str], Any] = {}

# Onboarding flags keyed by user id, used when MongoDB is disabled.
onboarding_flags: Dict[str, Dict[str, Any]] = {}


def forget_user(user_id: str) -> None:
    """Drop every cached record belonging to ``user_id``."""
    bootstraps.pop(user_id, None)
    for key in [key for key in wizards if key[0] == user_id]:
        wizards.pop(key, None)

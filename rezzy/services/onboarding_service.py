"""Persistence for the local onboarding flag and pending profile syncs.

The ``completed_locally`` flag keeps the onboarding flow from re-appearing
when the backend is unreachable. It is written here as soon as the user
finishes onboarding, before the profile reaches the backend.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from rezzy import database
from rezzy.storage import onboarding_flags

_LOGGER = logging.getLogger(__name__)


def _get_flags_collection() -> Optional[Collection]:
    """Get the MongoDB onboarding collection if MongoDB is enabled."""
    if not database.mongodb_enabled():
        return None

    try:
        return database.get_database()["onboarding_flags"]
    except PyMongoError:
        _LOGGER.warning("MongoDB unavailable, using in-memory onboarding flags", exc_info=True)
        return None


def _load(user_id: str) -> Dict[str, Any]:
    collection = _get_flags_collection()
    if collection is not None:
        try:
            document = collection.find_one({"user_id": user_id})
        except PyMongoError:
            _LOGGER.warning("Failed to read onboarding flag for %s", user_id, exc_info=True)
            document = None
        if document:
            document.pop("_id", None)
            onboarding_flags[user_id] = document
            return document
    return onboarding_flags.get(user_id, {})


def _save(user_id: str, fields: Dict[str, Any]) -> None:
    record = dict(onboarding_flags.get(user_id, {}))
    record.update(fields)
    record["user_id"] = user_id
    record["updated_at"] = datetime.now(timezone.utc)
    onboarding_flags[user_id] = record

    collection = _get_flags_collection()
    if collection is None:
        return
    try:
        collection.update_one({"user_id": user_id}, {"$set": record}, upsert=True)
    except PyMongoError:
        _LOGGER.warning("Failed to persist onboarding flag for %s", user_id, exc_info=True)


def is_completed_locally(user_id: str) -> bool:
    """Return whether the user has finished onboarding on this client."""
    return bool(_load(user_id).get("completed_locally"))


def mark_completed_locally(user_id: str) -> None:
    _save(user_id, {"completed_locally": True})


def save_pending_sync(user_id: str, profile: Dict[str, Any]) -> None:
    """Remember profile fields that still have to reach the backend."""
    _save(user_id, {"pending_sync": dict(profile)})


def get_pending_sync(user_id: str) -> Optional[Dict[str, Any]]:
    pending = _load(user_id).get("pending_sync")
    return dict(pending) if pending else None


def clear_pending_sync(user_id: str) -> None:
    _save(user_id, {"pending_sync": None})


def create_indexes() -> None:
    """Create the unique per-user index on the onboarding collection."""
    collection = _get_flags_collection()
    if collection is None:
        return
    collection.create_index("user_id", unique=True)

"""MongoDB database configuration and connection management."""

from __future__ import annotations

import os
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from rezzy.config import load_settings


# Global MongoDB client instance
_client: Optional[MongoClient] = None
_database: Optional[Database] = None

# ENABLE_MONGODB as configured on the running app; None until create_app sets it.
_enabled: Optional[bool] = None


def configure(enabled: bool) -> None:
    global _enabled
    _enabled = bool(enabled)


def mongodb_enabled() -> bool:
    if _enabled is None:
        return load_settings()["ENABLE_MONGODB"]
    return _enabled


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client instance."""
    global _client
    if _client is None:
        mongo_uri = os.getenv("MONGODB_URI", "mongodb://localhost:27017/")
        _client = MongoClient(mongo_uri, serverSelectionTimeoutMS=5000)
    return _client


def get_database() -> Database:
    """Get the MongoDB database instance."""
    global _database
    if _database is None:
        client = get_mongo_client()
        db_name = os.getenv("MONGODB_DATABASE", "rezzy_dashboard")
        _database = client[db_name]
    return _database


def close_mongo_connection():
    """Close the MongoDB connection."""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None

#!/usr/bin/env python3
"""Drop the persisted onboarding flags so every user is asked to onboard again."""

import sys

from dotenv import load_dotenv

load_dotenv()

from rezzy.database import get_database, mongodb_enabled

COLLECTIONS_TO_DROP = ["onboarding_flags"]


def reset_all_collections():
    """Drop all collections and start fresh."""
    db = get_database()

    print("Clearing collections...")
    for collection_name in COLLECTIONS_TO_DROP:
        db[collection_name].drop()
        print(f"   dropped {collection_name}")

    print("\nDatabase reset complete.")


if __name__ == "__main__":
    if not mongodb_enabled():
        print("MongoDB is not enabled. Set ENABLE_MONGODB=true in .env")
        sys.exit(1)

    print("This will DELETE all stored onboarding flags and pending profile syncs.")
    confirm = input("\nAre you sure? Type 'yes' to continue: ")
    if confirm.lower() == "yes":
        reset_all_collections()
    else:
        print("Reset cancelled.")

#!/usr/bin/env python3
"""Database management helpers for the Toilet Finder Flask app (MongoDB).

Usage: python db_manager.py <command>

Commands:
  list_users    - List all users in the database
  create_user   - Create a new user (interactive)
  delete_user   - Delete a user and everything they posted
  list_toilets  - List all toilets with their coordinates
  reset_db      - Delete user-generated collections (users, toilets, reviews)
"""

from __future__ import annotations

import sys
from datetime import datetime
from getpass import getpass

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

try:
    from app import User, mongo_db
    from image_host import ImageHostError, destroy_images
    from signup_errors import SignupError, classify_signup_error
except Exception as exc:  # pragma: no cover - CLI helper
    print(f"Unable to import Flask app context: {exc}")
    sys.exit(1)


def _created(doc) -> str:
    created = doc.get("created_at")
    return created.strftime("%Y-%m-%d %H:%M") if isinstance(created, datetime) else "n/a"


def list_users() -> None:
    """List all users with their key attributes."""
    users = list(mongo_db.users.find().sort("created_at", ASCENDING))
    if not users:
        print("No users found in MongoDB.")
        return
    print(f"\n{'ID':<25} {'Email':<30} {'Username':<20} {'Login':<8} {'Created'}")
    print("-" * 95)
    for doc in users:
        login_kind = "google" if doc.get("google_id") and not doc.get("password_hash") else "local"
        print(
            f"{str(doc.get('_id')):<25} "
            f"{doc.get('email', '-'):<30} "
            f"{doc.get('username', '-'):<20} "
            f"{login_kind:<8} "
            f"{_created(doc)}"
        )
    print(f"\nTotal users: {len(users)}")


def create_user() -> None:
    print("\n--- Create New User ---")
    username = input("Username: ").strip()
    email = input("Email: ").strip()
    password = getpass("Password: ").strip()
    try:
        user = User.register(username, email, password)
    except (SignupError, PyMongoError) as exc:
        print(f"Error: {classify_signup_error(exc)}")
        return
    print(f"Success: created user {user.username!r} with id {user.id}")


def delete_user() -> None:
    """Delete a user, their toilets (with hosted images) and their reviews."""
    email = input("Enter email of user to delete: ").strip()
    if not email:
        print("Email is required.")
        return
    user = User.get_by_email(email)
    if not user:
        print(f"Error: No user found with email {email!r}.")
        return
    confirm = input(f"Are you sure you want to delete {user.username} ({email})? [y/N]: ")
    if confirm.lower() != "y":
        print("Deletion cancelled.")
        return
    toilets = list(mongo_db.toilets.find({"author_id": user.mongo_id}))
    toilet_ids = [doc["_id"] for doc in toilets]
    filenames = [img.get("filename") for doc in toilets for img in doc.get("images") or [] if img.get("filename")]
    try:
        destroy_images(filenames)
    except ImageHostError as exc:
        print(f"Warning: could not remove hosted images: {exc}")
    mongo_db.reviews.delete_many(
        {"$or": [{"author_id": user.mongo_id}, {"toilet_id": {"$in": toilet_ids}}]}
    )
    mongo_db.toilets.delete_many({"author_id": user.mongo_id})
    mongo_db.users.delete_one({"_id": user.mongo_id})
    print(f"User, {len(toilet_ids)} toilet(s) and related reviews deleted.")


def list_toilets() -> None:
    toilets = list(mongo_db.toilets.find().sort("created_at", ASCENDING))
    if not toilets:
        print("No toilets found in MongoDB.")
        return
    print(f"\n{'ID':<25} {'Name':<30} {'Paid':<5} {'Rating':<7} {'Coordinates':<24} {'Created'}")
    print("-" * 110)
    for doc in toilets:
        coords = (doc.get("geometry") or {}).get("coordinates")
        coords_str = f"{coords[0]:.4f},{coords[1]:.4f}" if coords else "missing"
        print(
            f"{str(doc.get('_id')):<25} "
            f"{(doc.get('name') or '-')[:29]:<30} "
            f"{'yes' if doc.get('is_paid') else 'no':<5} "
            f"{str(doc.get('cleanliness_rating', '-')):<7} "
            f"{coords_str:<24} "
            f"{_created(doc)}"
        )
    print(f"\nTotal toilets: {len(toilets)}")


def reset_db() -> None:
    """Reset user-generated collections (drops users, toilets, and reviews)."""
    confirm = input("This will DELETE all users, toilets, and reviews. Continue? [y/N]: ")
    if confirm.lower() != "y":
        print("Reset cancelled.")
        return
    mongo_db.users.delete_many({})
    mongo_db.toilets.delete_many({})
    mongo_db.reviews.delete_many({})
    print("Database reset. Hosted images were left untouched.")


def show_help() -> None:
    print(__doc__)


def main() -> None:
    if len(sys.argv) < 2:
        show_help()
        return
    command = sys.argv[1].lower()
    commands = {
        "list_users": list_users,
        "create_user": create_user,
        "delete_user": delete_user,
        "list_toilets": list_toilets,
        "reset_db": reset_db,
        "help": show_help,
    }
    handler = commands.get(command)
    if not handler:
        print(f"Unknown command: {command}")
        show_help()
        return
    handler()


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
User management CLI for the chat dashboard.

Usage:
    # Create user (interactive prompts)
    python -m scripts.manage_users --username=alice --name="Alice" --role=user

    # List users
    python -m scripts.manage_users --list

    # Reset password
    python -m scripts.manage_users --username=alice --reset-password

    # Delete user
    python -m scripts.manage_users --username=alice --delete

    # Recreate the bootstrap admin from config.toml
    python -m scripts.manage_users --reset-admin
"""

import sys
import argparse
import getpass
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_PASSWORD_LENGTH = 8


def prompt_password(label: str = "password") -> str:
    """Prompt until two matching passwords of sufficient length are entered."""
    while True:
        password = getpass.getpass(f"Enter {label} (min {MIN_PASSWORD_LENGTH} chars): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Error: Password must be at least {MIN_PASSWORD_LENGTH} characters")
            continue

        password_confirm = getpass.getpass(f"Confirm {label}: ")
        if password != password_confirm:
            print("Error: Passwords do not match")
            continue

        return password


def main():
    parser = argparse.ArgumentParser(description="Manage dashboard users")
    parser.add_argument("--username", help="Username")
    parser.add_argument("--name", help="Display name (create only)")
    parser.add_argument("--role", choices=["admin", "user"], default="user",
                        help="Role (create only)")
    parser.add_argument("--list", action="store_true", help="List all users")
    parser.add_argument("--reset-password", action="store_true", help="Reset user password")
    parser.add_argument("--delete", action="store_true", help="Delete user")
    parser.add_argument("--reset-admin", action="store_true",
                        help="Recreate the bootstrap admin account")
    args = parser.parse_args()

    import db.db as db
    from src.config import get_config
    from src.users import (
        create_user,
        delete_user,
        get_user_by_username,
        list_users,
        recreate_admin,
        reset_password,
        UserError,
    )

    db.init_pool()

    try:
        # List users
        if args.list:
            users = list_users()
            if not users:
                print("No users found.")
            else:
                print(f"{'ID':<6} {'Username':<24} {'Name':<30} {'Role':<8} {'Created':<24}")
                print("-" * 96)
                for u in users:
                    created = u.created_at.isoformat()[:19] if u.created_at else 'N/A'
                    print(f"{u.id:<6} {u.username:<24} {u.name:<30} {u.role.value:<8} {created:<24}")
            return

        # Recreate bootstrap admin
        if args.reset_admin:
            bootstrap = get_config().bootstrap
            admin = recreate_admin(bootstrap.admin_username, bootstrap.admin_password, bootstrap.admin_name)
            print(f"✅ Recreated admin '{admin.username}' (id={admin.id})")
            return

        username = args.username
        if not username:
            username = input("Enter username: ").strip()
            if not username:
                print("Error: Username required")
                sys.exit(1)

        # Reset password
        if args.reset_password:
            user = get_user_by_username(username)
            if not user:
                print(f"Error: User '{username}' not found")
                sys.exit(1)
            password = prompt_password("new password")
            reset_password(user.id, password)
            print(f"✅ Password reset for '{username}'")
            return

        # Delete
        if args.delete:
            user = get_user_by_username(username)
            if not user:
                print(f"Error: User '{username}' not found")
                sys.exit(1)
            # No session here, so no caller id to protect.
            delete_user(user.id, caller_id=-1)
            print(f"✅ Deleted user '{username}'")
            return

        # Create user (default action) - interactive prompts
        if get_user_by_username(username):
            print(f"Error: User '{username}' already exists")
            sys.exit(1)

        name = args.name or input("Enter display name: ").strip()
        if not name:
            print("Error: Display name required")
            sys.exit(1)

        password = prompt_password()
        user = create_user(username, password, name, args.role)
        print(f"✅ Created {user.role.value} '{user.username}' (id={user.id})")

    except UserError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close_pool()


if __name__ == "__main__":
    main()

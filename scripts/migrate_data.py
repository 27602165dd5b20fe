#!/usr/bin/env python3
"""
Split a legacy single-file data.json into users.json, sessions.json and clubs.json.

Push subscriptions, stored at the top level in the legacy file, are attached to
their user (the ``user`` key is dropped). Subscriptions whose user no longer
exists are reported and discarded.

Usage:
    python scripts/migrate_data.py [data-file] [--data-dir DIR]

Defaults: data-file is data.json, data-dir is $DATA_DIR (or ./data).
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

# Add the project root to the path so we can import badly modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from badly.database.db import DATA_DIR  # noqa: E402
from badly.database.store import AtomicFileStore  # noqa: E402


def migrate(data_file: Path, data_dir: Path) -> Dict[str, Any]:
    """
    Run the migration.

    Returns:
        Summary with collection sizes, mapped and orphaned subscription counts
    """
    with open(data_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    users = data.get("users") or []
    sessions = data.get("sessions") or []
    clubs = data.get("clubs") or []
    push_subscriptions = data.get("pushSubscriptions") or []

    mapped = 0
    for user in users:
        user_subs = [sub for sub in push_subscriptions if sub.get("user") == user.get("name")]
        user["pushSubscriptions"] = [
            {key: value for key, value in sub.items() if key != "user"} for sub in user_subs
        ]
        mapped += len(user_subs)

    user_names = {user.get("name") for user in users}
    orphaned = [sub for sub in push_subscriptions if sub.get("user") not in user_names]
    if orphaned:
        print(f"⚠️  {len(orphaned)} orphaned subscription(s) (user not found):")
        for sub in orphaned:
            print(f"  - endpoint: {str(sub.get('endpoint', ''))[:60]}... (user: {sub.get('user')})")

    data_dir.mkdir(parents=True, exist_ok=True)
    print("\nWriting files:")
    for file_name, items in (
        ("users.json", users),
        ("sessions.json", sessions),
        ("clubs.json", clubs),
    ):
        store = AtomicFileStore(data_dir / file_name)
        store.write(items)
        print(f"  {file_name} ({store.file_path.stat().st_size} bytes)")

    return {
        "users": len(users),
        "sessions": len(sessions),
        "clubs": len(clubs),
        "push_subscriptions": len(push_subscriptions),
        "mapped": mapped,
        "orphaned": len(orphaned),
    }


def main():
    parser = argparse.ArgumentParser(description="Split data.json into per-collection files")
    parser.add_argument("data_file", nargs="?", default="data.json", help="Legacy data file")
    parser.add_argument("--data-dir", default=DATA_DIR, help="Output directory")
    args = parser.parse_args()

    data_file = Path(args.data_file)
    if not data_file.exists():
        print(f"❌ File not found: {data_file}")
        sys.exit(1)

    print(f"Reading {data_file}...")
    summary = migrate(data_file, Path(args.data_dir))

    print("\nSummary:")
    print(f"  Users:              {summary['users']}")
    print(f"  Sessions:           {summary['sessions']}")
    print(f"  Clubs:              {summary['clubs']}")
    print(
        f"  Push subscriptions: {summary['push_subscriptions']} -> "
        f"{summary['mapped']} attached to users"
    )
    print("\n✅ Migration complete.")


if __name__ == "__main__":
    main()

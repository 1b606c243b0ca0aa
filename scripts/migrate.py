"""Script to run database migrations."""

import argparse
import sys

from alembic import command
from alembic.config import Config


def run(action: str, argument: str | None) -> None:
    """Run one alembic command against ``alembic.ini``."""
    alembic_cfg = Config("alembic.ini")

    try:
        if action == "upgrade":
            print(f"Upgrading database to {argument or 'head'}...")
            command.upgrade(alembic_cfg, argument or "head")
        elif action == "downgrade":
            print(f"Downgrading database to {argument or '-1'}...")
            command.downgrade(alembic_cfg, argument or "-1")
        elif action == "create":
            if not argument:
                print("✗ A message is required to create a migration", file=sys.stderr)
                sys.exit(2)
            print(f"Creating migration: {argument}")
            command.revision(alembic_cfg, message=argument, autogenerate=True)
        print(f"✓ {action.capitalize()} completed successfully!")
    except Exception as e:
        print(f"✗ {action.capitalize()} failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Manage database migrations")
    parser.add_argument(
        "action",
        nargs="?",
        default="upgrade",
        choices=["upgrade", "downgrade", "create"],
    )
    parser.add_argument("argument", nargs="?", help="Target revision or migration message")
    args = parser.parse_args()
    run(args.action, args.argument)

"""Add indexes for program/template link reads on existing Postgres databases.

Fresh databases get these from the ORM metadata; this script only backfills
older deployments. Safe to run multiple times (uses IF NOT EXISTS).

Run:
  python backend/migrations/001_add_link_indexes.py --yes
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import text

from core.database import ENGINE


STATEMENTS = [
    # Uniqueness backs idempotent attach.
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_program_template_links_program_template "
    "ON program_template_links (program_id, template_id);",
    "CREATE INDEX IF NOT EXISTS ix_program_template_links_template_id ON program_template_links (template_id);",
    "CREATE INDEX IF NOT EXISTS ix_program_template_links_program_sort "
    "ON program_template_links (program_id, sort_order);",

    # Attach picker
    "CREATE INDEX IF NOT EXISTS ix_templates_status_deleted ON templates (status, deleted_at);",

    # Manager scope checks
    "CREATE INDEX IF NOT EXISTS ix_program_memberships_user_program "
    "ON program_memberships (user_id, program_id, role);",
]


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    if not args.yes:
        print("Dry run. Re-run with --yes to apply.")
        for s in STATEMENTS:
            print("---")
            print(s.strip())
        return

    with ENGINE.begin() as conn:
        for s in STATEMENTS:
            conn.execute(text(s))

    print(f"OK: created/verified {len(STATEMENTS)} indexes.")


if __name__ == "__main__":
    main()

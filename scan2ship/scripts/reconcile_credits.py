"""
Retry charges for feature calls whose credit deduction failed, then audit ledgers.

Usage (with DATABASE_URL set):
  python -m scan2ship.scripts.reconcile_credits            # retry pending failures
  python -m scan2ship.scripts.reconcile_credits --audit    # also check every account against its ledger
"""
from __future__ import annotations

import sys

from scan2ship.components.credits.reconciliation import audit_all_accounts, reconcile_deduction_failures
from scan2ship.platform.database import SessionLocal
from scan2ship.platform.logging import setup_logging


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    unknown = [a for a in args if a != "--audit"]
    if unknown:
        print("Usage: python -m scan2ship.scripts.reconcile_credits [--audit]", file=sys.stderr)
        return 2

    setup_logging()
    db = SessionLocal()
    try:
        summary = reconcile_deduction_failures(db)
        print(
            f"Deduction failures: checked={summary['checked']} charged={summary['charged']} "
            f"still_pending={summary['pending']} skipped={summary['skipped']} errors={summary['errors']}"
        )
        if "--audit" not in args:
            return 0

        problems = audit_all_accounts(db)
        if not problems:
            print("Ledger audit: all accounts consistent.")
            return 0
        for tenant_id, issues in problems.items():
            for issue in issues:
                print(f"Ledger audit: tenant={tenant_id} {issue}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())

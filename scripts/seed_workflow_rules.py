#!/usr/bin/env python3
"""
Seed workflow rules for a company from a YAML rule set.

Validates the rule set, creates missing tables, then creates or updates
each rule through the RuleAdminService (so every change is versioned and
audited).  Re-running with an unchanged file is a no-op.

Usage:
    python3 scripts/seed_workflow_rules.py --company-id <uuid>
    python3 scripts/seed_workflow_rules.py --company-id <uuid> --rules my_rules.yaml
    python3 scripts/seed_workflow_rules.py --validate-only --rules my_rules.yaml
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from workflow_config import (  # noqa: E402
    DEFAULT_RULES_PATH,
    load_rule_set,
    load_settings,
    seed_rules,
    validate_rule_set,
)
from workflow_kernel.db.engine import (  # noqa: E402
    create_tables,
    init_engine_from_url,
    session_scope,
)
from workflow_kernel.models.audit_event import SYSTEM_ACTOR_ID  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed workflow approval rules")
    parser.add_argument("--company-id", type=UUID, help="Company to seed rules for")
    parser.add_argument(
        "--rules", type=Path, default=DEFAULT_RULES_PATH,
        help="Rule set YAML (default: bundled default rules)",
    )
    parser.add_argument("--settings", type=Path, help="Engine settings YAML")
    parser.add_argument("--database-url", help="Overrides settings and DATABASE_URL")
    parser.add_argument("--actor-id", type=UUID, default=SYSTEM_ACTOR_ID)
    parser.add_argument(
        "--validate-only", action="store_true",
        help="Validate the rule set and exit without touching the database",
    )
    args = parser.parse_args()

    rule_set = load_rule_set(args.rules)
    validation = validate_rule_set(rule_set)
    for warning in validation.warnings:
        print(f"  WARNING: {warning}")
    for error in validation.errors:
        print(f"  ERROR: {error}")
    if not validation.is_valid:
        print(f"Rule set '{rule_set.name}' is invalid.")
        return 1

    print(
        f"Rule set '{rule_set.name}' v{rule_set.version}: "
        f"{len(rule_set.rules)} rules, checksum {rule_set.checksum[:12]}"
    )
    if args.validate_only:
        return 0
    if args.company_id is None:
        parser.error("--company-id is required unless --validate-only is given")

    settings = load_settings(args.settings)
    database_url = args.database_url or settings.database_url
    init_engine_from_url(database_url, echo=settings.echo_sql)
    create_tables()

    with session_scope() as session:
        report = seed_rules(session, rule_set, args.company_id, args.actor_id)

    for label in report.created:
        print(f"  created    {label}")
    for label in report.updated:
        print(f"  updated    {label}")
    for label in report.unchanged:
        print(f"  unchanged  {label}")
    print(f"Done: {report.total} rules seeded for company {args.company_id}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

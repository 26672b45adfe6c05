"""
Rule seeding (``workflow_config.seeding``).

Installs a validated ``WorkflowRuleSet`` into one company through the
RuleAdminService, so seeded rules get the same validation, versioning
and audit trail as rules edited by an administrator.

Seeding is idempotent: rules are matched by (workflow_type, name);
unchanged rules are left alone and changed rules are updated in place
(a new version).  Rules missing from the file are not touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from workflow_config.loader import to_rule_conditions, to_step_templates
from workflow_config.schema import WorkflowRuleSet
from workflow_config.validator import validate_rule_set
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.rules import ordered_steps
from workflow_kernel.exceptions import InvalidRuleError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.selectors.rule_selector import RuleSelector
from workflow_kernel.services.auditor_service import AuditorService
from workflow_kernel.services.rule_admin_service import RuleAdminService

logger = get_logger("config.seeding")


@dataclass
class SeedReport:
    """What a seeding run did, by rule label ``TYPE/name``."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated) + len(self.unchanged)


def seed_rules(
    session: Session,
    rule_set: WorkflowRuleSet,
    company_id: UUID,
    actor_id: UUID,
    clock: Clock | None = None,
) -> SeedReport:
    """Create or update the rules of ``rule_set`` for ``company_id``.

    Flushes but does not commit.

    Raises:
        InvalidRuleError: the rule set failed validation (nothing written).
        AmbiguousRuleError: a seeded rule collides with an existing
            active rule of another name.
    """
    validation = validate_rule_set(rule_set)
    if not validation.is_valid:
        raise InvalidRuleError(rule_set.name, "; ".join(validation.errors))

    clock = clock or SystemClock()
    admin = RuleAdminService(session, AuditorService(session, clock), clock)
    selector = RuleSelector(session)
    report = SeedReport()

    for rule_def in rule_set.rules:
        label = f"{rule_def.workflow_type}/{rule_def.name}"
        steps = ordered_steps(to_step_templates(rule_def))
        conditions = to_rule_conditions(rule_def)

        existing = selector.find_by_name(company_id, rule_def.workflow_type, rule_def.name)
        if existing is None:
            admin.create_rule(
                company_id=company_id,
                workflow_type=rule_def.workflow_type,
                name=rule_def.name,
                steps=steps,
                actor_id=actor_id,
                conditions=conditions,
                is_active=rule_def.is_active,
            )
            report.created.append(label)
        elif (
            existing.steps == steps
            and existing.conditions == conditions
            and existing.is_active == rule_def.is_active
        ):
            report.unchanged.append(label)
        else:
            admin.update_rule(
                existing.rule_id,
                company_id,
                actor_id,
                is_active=rule_def.is_active,
                conditions=conditions,
                steps=steps,
            )
            report.updated.append(label)

    logger.info(
        "workflow_rules_seeded",
        extra={
            "rule_set": rule_set.name,
            "rule_set_version": rule_set.version,
            "checksum": rule_set.checksum,
            "company_id": str(company_id),
            "rules_created": len(report.created),
            "rules_updated": len(report.updated),
            "rules_unchanged": len(report.unchanged),
        },
    )
    return report

"""
Rule Set Validator (``workflow_config.validator``).

Responsibility
--------------
Validates a ``WorkflowRuleSet`` before it is seeded, running the same
save-time checks the RuleAdminService applies plus checks that only make
sense across a whole file.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called by
``workflow_config.seeding`` and by ``scripts/seed_workflow_rules.py``.

Invariants enforced
-------------------
* ``(workflow_type, name)`` is unique within a rule set.
* Every step chain passes ``validate_step_templates`` and every approver
  pairing passes ``approver_from_parts``.
* Conditions pass ``validate_conditions`` and reference valid UUIDs.
* No two active rules of one workflow type carry equal conditions.

Failure modes
-------------
* Validation errors (``RuleSetValidationResult.errors``)  -> the rule set
  MUST NOT be seeded.
* Validation warnings  -> may be seeded but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_config.loader import to_rule_conditions, to_step_templates
from workflow_config.schema import WorkflowRuleDef, WorkflowRuleSet
from workflow_kernel.domain.rules import (
    RuleConditions,
    validate_conditions,
    validate_step_templates,
)
from workflow_kernel.exceptions import ConfigurationError


@dataclass
class RuleSetValidationResult:
    """
    Result of rule set validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_rule_set(rule_set: WorkflowRuleSet) -> RuleSetValidationResult:
    """Validate every rule of ``rule_set`` and the set as a whole."""
    result = RuleSetValidationResult()

    if not rule_set.rules:
        result.add_warning(f"Rule set '{rule_set.name}' defines no rules")

    _validate_name_uniqueness(rule_set, result)
    conditions_by_rule: dict[int, RuleConditions] = {}
    for index, rule in enumerate(rule_set.rules):
        conditions = _validate_rule(rule, result)
        if conditions is not None:
            conditions_by_rule[index] = conditions
    _validate_no_ambiguity(rule_set, conditions_by_rule, result)

    return result


def _label(rule: WorkflowRuleDef) -> str:
    return f"{rule.workflow_type}/{rule.name}"


def _validate_name_uniqueness(
    rule_set: WorkflowRuleSet, result: RuleSetValidationResult
) -> None:
    seen: set[tuple[str, str]] = set()
    for rule in rule_set.rules:
        key = (rule.workflow_type, rule.name)
        if key in seen:
            result.add_error(f"Duplicate rule: {_label(rule)} appears more than once")
        seen.add(key)


def _validate_rule(
    rule: WorkflowRuleDef, result: RuleSetValidationResult
) -> RuleConditions | None:
    """Check one rule; returns its domain conditions when they parse."""
    label = _label(rule)
    if not rule.name.strip():
        result.add_error(f"Rule of type {rule.workflow_type!r} has an empty name")
    if not rule.workflow_type.strip():
        result.add_error(f"Rule '{rule.name}' has an empty workflow_type")

    try:
        steps = to_step_templates(rule)
        validate_step_templates(steps)
    except ConfigurationError as exc:
        result.add_error(f"Rule '{label}': {exc}")

    try:
        conditions = to_rule_conditions(rule)
    except ValueError as exc:
        result.add_error(f"Rule '{label}': invalid condition reference ({exc})")
        return None

    try:
        validate_conditions(rule.name, conditions)
    except ConfigurationError as exc:
        result.add_error(f"Rule '{label}': {exc}")
        return None

    if not rule.is_active:
        result.add_warning(f"Rule '{label}' is inactive and will never be selected")
    return conditions


def _validate_no_ambiguity(
    rule_set: WorkflowRuleSet,
    conditions_by_rule: dict[int, RuleConditions],
    result: RuleSetValidationResult,
) -> None:
    seen: dict[tuple[str, RuleConditions], str] = {}
    for index, rule in enumerate(rule_set.rules):
        if not rule.is_active or index not in conditions_by_rule:
            continue
        key = (rule.workflow_type, conditions_by_rule[index])
        if key in seen:
            result.add_error(
                f"Ambiguous rules for {rule.workflow_type}: '{seen[key]}' and "
                f"'{rule.name}' have identical conditions"
            )
        else:
            seen[key] = rule.name

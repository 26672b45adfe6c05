"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads workflow rule sets and engine settings from YAML and parses them
into typed ``workflow_config.schema`` dataclasses.  Also converts parsed
rule definitions into the kernel's domain value objects so the validator
and the seeder share one translation.

Architecture position
---------------------
**Config layer** -- infrastructure tooling, consumed by scripts and by
``workflow_config.seeding``.  Depends on kernel domain types only.

Invariants enforced
-------------------
* Parse errors raise ``KeyError`` / ``ValueError`` with descriptive
  messages; required fields are never silently defaulted.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed data.
* ``DATABASE_URL`` in the environment overrides the settings file.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid approver pairing  -> ``InvalidStepTemplateError`` from
  ``to_step_templates``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from workflow_config.schema import (
    EngineSettings,
    RuleConditionsDef,
    StepDef,
    WorkflowRuleDef,
    WorkflowRuleSet,
)
from workflow_kernel.domain.approver import approver_from_parts
from workflow_kernel.domain.rules import RuleConditions, StepTemplate

RULES_DIR = Path(__file__).parent / "rules"
DEFAULT_RULES_PATH = RULES_DIR / "default_rules.yaml"

DATABASE_URL_ENV = "DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        raise ValueError(f"Cannot parse amount from {value!r}") from None


def parse_step(data: dict[str, Any]) -> StepDef:
    """Parse a StepDef. ``step_order`` and ``approver_type`` are required."""
    hours = data.get("auto_approve_after_hours")
    return StepDef(
        step_order=int(data["step_order"]),
        approver_type=str(data["approver_type"]),
        role_code=data.get("role_code"),
        employee_id=str(data["employee_id"]) if data.get("employee_id") is not None else None,
        auto_approve_after_hours=int(hours) if hours is not None else None,
        can_skip=bool(data.get("can_skip", False)),
    )


def parse_conditions(data: dict[str, Any] | None) -> RuleConditionsDef | None:
    if not data:
        return None
    return RuleConditionsDef(
        min_amount=_parse_amount(data.get("min_amount")),
        max_amount=_parse_amount(data.get("max_amount")),
        department_ids=tuple(str(d) for d in data.get("department_ids", ())),
        requester_ids=tuple(str(r) for r in data.get("requester_ids", ())),
    )


def parse_rule(data: dict[str, Any]) -> WorkflowRuleDef:
    """
    Parse a ``WorkflowRuleDef`` from a dict.

    Raises:
        KeyError: if ``workflow_type``, ``name`` or ``steps`` is missing.
    """
    return WorkflowRuleDef(
        workflow_type=data["workflow_type"],
        name=data["name"],
        steps=tuple(parse_step(s) for s in data["steps"]),
        is_active=bool(data.get("is_active", True)),
        conditions=parse_conditions(data.get("conditions")),
        description=data.get("description", ""),
    )


def parse_rule_set(data: dict[str, Any]) -> WorkflowRuleSet:
    """Parse a rule set document; the checksum covers the raw data."""
    return WorkflowRuleSet(
        name=data.get("name", "unnamed"),
        version=int(data.get("version", 1)),
        rules=tuple(parse_rule(r) for r in data.get("rules", [])),
        checksum=compute_checksum(data),
    )


def load_rule_set(path: Path | str = DEFAULT_RULES_PATH) -> WorkflowRuleSet:
    """Load and parse a rule set YAML file (the bundled defaults if omitted)."""
    return parse_rule_set(load_yaml_file(Path(path)))


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Load engine settings from the ``engine:`` section of a YAML file.

    Without a file the dataclass defaults apply.  A ``DATABASE_URL``
    environment variable wins over both.
    """
    environ = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    if path is not None:
        data = load_yaml_file(Path(path)).get("engine", {}) or {}

    defaults = EngineSettings()
    batch_size = data.get("sweep_batch_size", defaults.sweep_batch_size)
    return EngineSettings(
        database_url=environ.get(
            DATABASE_URL_ENV, data.get("database_url", defaults.database_url),
        ),
        echo_sql=bool(data.get("echo_sql", defaults.echo_sql)),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
        sweep_interval_seconds=float(
            data.get("sweep_interval_seconds", defaults.sweep_interval_seconds)
        ),
        sweep_batch_size=int(batch_size) if batch_size is not None else None,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed YAML document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Schema -> domain
# ---------------------------------------------------------------------------


def to_step_templates(rule: WorkflowRuleDef) -> tuple[StepTemplate, ...]:
    """Convert YAML steps to domain templates (validates approver pairing)."""
    return tuple(
        StepTemplate(
            step_order=s.step_order,
            approver=approver_from_parts(
                s.approver_type,
                role_code=s.role_code,
                employee_id=s.employee_id,
                step_order=s.step_order,
            ),
            auto_approve_after_hours=s.auto_approve_after_hours,
            can_skip=s.can_skip,
        )
        for s in rule.steps
    )


def to_rule_conditions(rule: WorkflowRuleDef) -> RuleConditions:
    """Convert YAML conditions to the domain value (unconditional if absent)."""
    c = rule.conditions
    if c is None:
        return RuleConditions()
    return RuleConditions(
        min_amount=c.min_amount,
        max_amount=c.max_amount,
        department_ids=frozenset(UUID(d) for d in c.department_ids),
        requester_ids=frozenset(UUID(r) for r in c.requester_ids),
    )

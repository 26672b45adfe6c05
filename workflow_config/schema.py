"""
Workflow configuration schema.

The human-authored, reviewable form of workflow rules and engine
settings.  YAML files are parsed into these frozen dataclasses by the
loader, checked by the validator and installed by ``seeding``.

Key distinction:
  WorkflowRuleSet = source artifact (human-authored, versioned in git)
  WorkflowRule    = runtime rule (persisted, versioned per edit)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# ---------------------------------------------------------------------------
# Rule definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepDef:
    """One step as written in YAML."""

    step_order: int
    approver_type: str
    role_code: str | None = None
    employee_id: str | None = None
    auto_approve_after_hours: int | None = None
    can_skip: bool = False


@dataclass(frozen=True)
class RuleConditionsDef:
    """Optional applicability conditions as written in YAML."""

    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    department_ids: tuple[str, ...] = ()
    requester_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowRuleDef:
    """A rule as written in YAML; ``name`` is unique per workflow type."""

    workflow_type: str
    name: str
    steps: tuple[StepDef, ...]
    is_active: bool = True
    conditions: RuleConditionsDef | None = None
    description: str = ""


@dataclass(frozen=True)
class WorkflowRuleSet:
    """A named, versioned collection of rule definitions."""

    name: str
    version: int
    rules: tuple[WorkflowRuleDef, ...]
    checksum: str = ""

    def rules_for(self, workflow_type: str) -> tuple[WorkflowRuleDef, ...]:
        return tuple(r for r in self.rules if r.workflow_type == workflow_type)


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Deployment settings for the engine, scheduler and scripts."""

    database_url: str = "sqlite:///workflow.db"
    echo_sql: bool = False
    log_level: str = "INFO"
    sweep_interval_seconds: float = 60
    sweep_batch_size: int | None = None

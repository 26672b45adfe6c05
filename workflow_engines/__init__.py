"""
Module: workflow_engines
Responsibility:
    Package entrypoint that re-exports the pure engines of the approval
    workflow: approver resolution, rule selection, chain materialisation
    and state machine planning.

Architecture position:
    Engines -- pure calculation layer, zero I/O apart from read-only
    directory lookups.  May only import workflow_kernel.domain types.
    MUST NOT import workflow_services or workflow_batch.

Invariants enforced:
    - Engines NEVER call ``datetime.now()``; the current time is passed in
      by the services, which hold the injected Clock.
    - Determinism: identical inputs always produce identical outputs.
"""

from workflow_engines.directory_resolver import resolve_approver
from workflow_engines.rule_selector import (
    conditions_match,
    rule_matches,
    select_rule,
    specificity_key,
)
from workflow_engines.state_machine import (
    build_events,
    can_transition,
    compute_deadline,
    plan_auto_advance,
    plan_cancel,
    plan_decision,
    plan_start,
)
from workflow_engines.step_sequencer import materialize_chain

__all__ = [
    "resolve_approver",
    "conditions_match",
    "rule_matches",
    "select_rule",
    "specificity_key",
    "materialize_chain",
    "build_events",
    "can_transition",
    "compute_deadline",
    "plan_auto_advance",
    "plan_cancel",
    "plan_decision",
    "plan_start",
]

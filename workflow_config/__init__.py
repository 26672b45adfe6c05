"""
Workflow configuration: YAML rule sets, engine settings and rule seeding.

Usage:
    from workflow_config import load_rule_set, seed_rules

    rule_set = load_rule_set()             # bundled default rules
    with session_scope() as session:
        seed_rules(session, rule_set, company_id, actor_id)
"""

from workflow_config.loader import (
    DEFAULT_RULES_PATH,
    compute_checksum,
    load_rule_set,
    load_settings,
    parse_rule,
    parse_rule_set,
    to_rule_conditions,
    to_step_templates,
)
from workflow_config.schema import (
    EngineSettings,
    RuleConditionsDef,
    StepDef,
    WorkflowRuleDef,
    WorkflowRuleSet,
)
from workflow_config.seeding import SeedReport, seed_rules
from workflow_config.validator import RuleSetValidationResult, validate_rule_set

__all__ = [
    "DEFAULT_RULES_PATH",
    "EngineSettings",
    "RuleConditionsDef",
    "RuleSetValidationResult",
    "SeedReport",
    "StepDef",
    "WorkflowRuleDef",
    "WorkflowRuleSet",
    "compute_checksum",
    "load_rule_set",
    "load_settings",
    "parse_rule",
    "parse_rule_set",
    "seed_rules",
    "to_rule_conditions",
    "to_step_templates",
    "validate_rule_set",
]

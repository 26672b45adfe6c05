"""
workflow_engines.rule_selector -- Pick the single applicable workflow rule.

Responsibility:
    Filter candidate rules down to the ones applicable to a subject and
    rank them so exactly one wins.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Candidates are loaded by
    ``workflow_kernel.selectors.rule_selector.RuleSelector``.

Invariants enforced:
    - Deterministic: the ranking is a total order, so the same candidates
      and context always select the same rule regardless of input order.
    - Ranking: more constrained dimensions first, then the most recently
      created rule, then the highest version, then the rule id.

Failure modes:
    - NoApplicableRuleError when nothing matches.  There is no fallback.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.instance import SubjectContext
from workflow_kernel.domain.rules import RuleConditions, WorkflowRule
from workflow_kernel.exceptions import NoApplicableRuleError

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def conditions_match(conditions: RuleConditions, context: SubjectContext) -> bool:
    """True when every constrained dimension accepts the context.

    A subject without an amount never matches an amount-constrained rule.
    """
    if conditions.min_amount is not None:
        if context.amount is None or context.amount < conditions.min_amount:
            return False
    if conditions.max_amount is not None:
        if context.amount is None or context.amount >= conditions.max_amount:
            return False
    if conditions.department_ids and context.department_id not in conditions.department_ids:
        return False
    if conditions.requester_ids and context.requester_id not in conditions.requester_ids:
        return False
    return True


def rule_matches(rule: WorkflowRule, workflow_type: str, context: SubjectContext) -> bool:
    return (
        rule.is_selectable
        and rule.workflow_type == workflow_type
        and rule.company_id == context.company_id
        and conditions_match(rule.conditions, context)
    )


def specificity_key(rule: WorkflowRule) -> tuple:
    """Sort key; the greatest key wins."""
    return (
        rule.conditions.constraint_count,
        rule.created_at or _EPOCH,
        rule.version,
        str(rule.rule_id),
    )


@traced_engine("rule_selector", "1.0", fingerprint_fields=("workflow_type",))
def select_rule(
    rules: Iterable[WorkflowRule],
    workflow_type: str,
    context: SubjectContext,
) -> WorkflowRule:
    """Return the single rule that governs ``workflow_type`` for ``context``.

    Raises:
        NoApplicableRuleError: no active rule of this type matches.
    """
    matching = [r for r in rules if rule_matches(r, workflow_type, context)]
    if not matching:
        raise NoApplicableRuleError(workflow_type, str(context.company_id))
    return max(matching, key=specificity_key)

"""
workflow_engines.step_sequencer -- Materialise a rule into a frozen chain.

Responsibility:
    Resolve every step template of the selected rule for one subject and
    produce the immutable ``ResolvedStep`` chain stored on the instance.

Architecture position:
    Engines -- pure apart from directory reads.

Invariants enforced:
    - All-or-nothing: an unresolvable, non-skippable step aborts the whole
      materialisation before any instance exists.
    - Chain length equals the rule's step count and follows step order.
    - Approver ids are copied; the chain is never re-resolved later.
"""

from __future__ import annotations

from workflow_engines.directory_resolver import resolve_approver
from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.approver import approver_to_parts
from workflow_kernel.domain.directory import Directory
from workflow_kernel.domain.instance import ResolvedStep, SubjectContext
from workflow_kernel.domain.rules import WorkflowRule, ordered_steps
from workflow_kernel.exceptions import UnresolvableApproverError


@traced_engine("step_sequencer", "1.0")
def materialize_chain(
    rule: WorkflowRule,
    context: SubjectContext,
    directory: Directory,
) -> tuple[ResolvedStep, ...]:
    """Resolve ``rule`` for the requester in ``context``.

    Unresolved skippable steps are kept in the chain as ``pre_skipped``;
    the state machine records them as skipped when their turn arrives.

    Raises:
        UnresolvableApproverError: a non-skippable step has no approver.
    """
    chain: list[ResolvedStep] = []
    for index, template in enumerate(ordered_steps(rule.steps)):
        kind, role_code, employee_ref = approver_to_parts(template.approver)
        identity = resolve_approver(
            directory,
            context.requester_id,
            template.approver,
            company_id=context.company_id,
            department_id=context.department_id,
        )
        if identity is None and not template.can_skip:
            raise UnresolvableApproverError(rule.name, template.step_order, kind.value)

        chain.append(
            ResolvedStep(
                step_index=index,
                step_order=template.step_order,
                approver_kind=kind,
                approver_id=identity.employee_id if identity else None,
                approver_name=identity.name if identity else None,
                role_code=role_code,
                employee_ref=employee_ref,
                auto_approve_after_hours=template.auto_approve_after_hours,
                can_skip=template.can_skip,
                pre_skipped=identity is None,
            )
        )
    return tuple(chain)

"""
workflow_engines.state_machine -- Pure transition planning for approval instances.

Responsibility:
    Decide what a requested operation does to an approval instance:
    which outcomes are recorded, where the step pointer ends up, the new
    overall status and the next step deadline.  The service persists the
    resulting ``TransitionPlan`` under an optimistic lock.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Time is passed in.

Invariants enforced:
    - Terminal instances never change (AlreadyFinalizedError).
    - ``current_step_index`` only increases; reject, revision and cancel
      leave it where it is.
    - Exactly one outcome per step, recorded in step order.
    - After any advance, consecutive pre-skipped steps are settled in the
      same transition, so a PENDING instance always waits on a resolved
      approver.
    - A step with a timeout auto-advances only once its deadline passed.

Failure modes:
    - AlreadyFinalizedError: instance is terminal.
    - StepAlreadyResolvedError: stale ``expected_step_index`` or a retried
      decision from an approver whose step is already behind us.
    - NotCurrentApproverError / NotSubjectOwnerError: wrong actor.
    - AutoAdvanceNotDueError: no timeout on the step or not yet due.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from workflow_kernel.domain.events import InstanceTransitioned
from workflow_kernel.domain.instance import (
    AUTO_APPROVE_REASON,
    INSTANCE_TRANSITIONS,
    SKIP_REASON_UNRESOLVED,
    ApprovalInstance,
    InstanceStatus,
    ResolvedStep,
    StepDecision,
    StepOutcome,
    TransitionPlan,
)
from workflow_kernel.exceptions import (
    AlreadyFinalizedError,
    AutoAdvanceNotDueError,
    NotCurrentApproverError,
    NotSubjectOwnerError,
    StepAlreadyResolvedError,
)

# Decisions an approver can record by hand.
HUMAN_DECISIONS = frozenset({
    StepDecision.APPROVED,
    StepDecision.REJECTED,
    StepDecision.REVISION_REQUESTED,
})


def can_transition(from_status: InstanceStatus, to_status: InstanceStatus) -> bool:
    return to_status in INSTANCE_TRANSITIONS.get(from_status, frozenset())


def compute_deadline(step: ResolvedStep, entered_at: datetime) -> datetime | None:
    """Deadline for a step entered at ``entered_at``; None if it never times out."""
    if step.auto_approve_after_hours is None:
        return None
    return entered_at + timedelta(hours=step.auto_approve_after_hours)


def _settle(
    chain: tuple[ResolvedStep, ...],
    start_index: int,
    now: datetime,
) -> tuple[int, list[StepOutcome]]:
    """Record SKIPPED for the pre-skipped steps starting at ``start_index``."""
    index = start_index
    outcomes: list[StepOutcome] = []
    while index < len(chain) and chain[index].pre_skipped:
        outcomes.append(StepOutcome(
            step_index=index,
            decision=StepDecision.SKIPPED,
            decided_at=now,
            comment=SKIP_REASON_UNRESOLVED,
        ))
        index += 1
    return index, outcomes


def _advance(
    chain: tuple[ResolvedStep, ...],
    start_index: int,
    now: datetime,
    leading: tuple[StepOutcome, ...] = (),
) -> TransitionPlan:
    index, settled = _settle(chain, start_index, now)
    outcomes = leading + tuple(settled)
    if index >= len(chain):
        return TransitionPlan(
            status=InstanceStatus.APPROVED,
            current_step_index=len(chain),
            new_outcomes=outcomes,
            step_entered_at=None,
            step_deadline_at=None,
            resolved_at=now,
        )
    return TransitionPlan(
        status=InstanceStatus.PENDING,
        current_step_index=index,
        new_outcomes=outcomes,
        step_entered_at=now,
        step_deadline_at=compute_deadline(chain[index], now),
    )


def _guard_pending(instance: ApprovalInstance) -> None:
    if instance.is_terminal:
        raise AlreadyFinalizedError(str(instance.instance_id), instance.status.value)


def _guard_expected_step(instance: ApprovalInstance, expected_step_index: int | None) -> None:
    if expected_step_index is not None and expected_step_index != instance.current_step_index:
        raise StepAlreadyResolvedError(
            str(instance.instance_id),
            expected_step_index,
            f"instance is now at step {instance.current_step_index}",
        )


def plan_start(chain: tuple[ResolvedStep, ...], now: datetime) -> TransitionPlan:
    """Initial plan for a freshly materialised chain.

    A chain whose every step is pre-skipped approves immediately.
    """
    return _advance(chain, 0, now)


def plan_decision(
    instance: ApprovalInstance,
    actor_id: UUID,
    decision: StepDecision,
    now: datetime,
    *,
    comment: str | None = None,
    expected_step_index: int | None = None,
    override: bool = False,
) -> TransitionPlan:
    """Plan an approver's decision on the current step.

    ``override`` lets a caller that already verified a super-admin
    permission act on a step assigned to someone else; the outcome is
    flagged so the history shows it.
    """
    if decision not in HUMAN_DECISIONS:
        raise ValueError(f"{decision.value} is not an approver decision")

    _guard_pending(instance)
    _guard_expected_step(instance, expected_step_index)

    index = instance.current_step_index
    step = instance.chain[index]
    if not override and step.approver_id != actor_id:
        if any(o.actor_id == actor_id for o in instance.outcomes):
            raise StepAlreadyResolvedError(
                str(instance.instance_id),
                index,
                f"actor {actor_id} already decided an earlier step",
            )
        raise NotCurrentApproverError(str(instance.instance_id), str(actor_id), index)

    outcome = StepOutcome(
        step_index=index,
        decision=decision,
        decided_at=now,
        actor_id=actor_id,
        comment=comment,
        override=override and step.approver_id != actor_id,
    )

    if decision == StepDecision.APPROVED:
        return _advance(instance.chain, index + 1, now, (outcome,))

    return TransitionPlan(
        status=InstanceStatus.REJECTED,
        current_step_index=index,
        new_outcomes=(outcome,),
        step_entered_at=instance.step_entered_at,
        step_deadline_at=None,
        resolved_at=now,
        resolved_by_id=actor_id,
        resolution_comment=comment,
    )


def plan_cancel(
    instance: ApprovalInstance,
    requester_id: UUID,
    now: datetime,
    reason: str | None = None,
) -> TransitionPlan:
    """Plan a withdrawal by the subject's owner. Records no step outcome."""
    _guard_pending(instance)
    if requester_id != instance.requester_id:
        raise NotSubjectOwnerError(str(instance.instance_id), str(requester_id))

    return TransitionPlan(
        status=InstanceStatus.CANCELLED,
        current_step_index=instance.current_step_index,
        new_outcomes=(),
        step_entered_at=instance.step_entered_at,
        step_deadline_at=None,
        resolved_at=now,
        resolved_by_id=requester_id,
        resolution_comment=reason,
    )


def plan_auto_advance(
    instance: ApprovalInstance,
    now: datetime,
    *,
    expected_step_index: int | None = None,
) -> TransitionPlan:
    """Plan a timeout-driven approval of the current step."""
    _guard_pending(instance)
    _guard_expected_step(instance, expected_step_index)

    index = instance.current_step_index
    step = instance.chain[index]
    deadline = instance.step_deadline_at
    if step.auto_approve_after_hours is None or deadline is None or now < deadline:
        raise AutoAdvanceNotDueError(
            str(instance.instance_id),
            index,
            deadline.isoformat() if deadline else None,
        )

    outcome = StepOutcome(
        step_index=index,
        decision=StepDecision.AUTO_APPROVED,
        decided_at=now,
        comment=AUTO_APPROVE_REASON,
    )
    return _advance(instance.chain, index + 1, now, (outcome,))


def build_events(
    instance: ApprovalInstance,
    plan: TransitionPlan,
    now: datetime,
    first_sequence: int,
    actor_id: UUID | None = None,
) -> tuple[InstanceTransitioned, ...]:
    """One event per new outcome; a cancellation yields a single event.

    Only the last event of a plan carries the plan's final status; the
    ones before it report ``PENDING``.  Starting an instance that waits on
    its first approver produces no event.
    """
    if not plan.new_outcomes:
        if plan.status != InstanceStatus.CANCELLED:
            return ()
        return (
            InstanceTransitioned(
                instance_id=instance.instance_id,
                subject=instance.subject,
                workflow_type=instance.workflow_type,
                new_status=plan.status,
                step_index=plan.current_step_index,
                sequence=first_sequence,
                occurred_at=now,
                actor_id=actor_id,
            ),
        )

    events: list[InstanceTransitioned] = []
    last = len(plan.new_outcomes) - 1
    for offset, outcome in enumerate(plan.new_outcomes):
        events.append(
            InstanceTransitioned(
                instance_id=instance.instance_id,
                subject=instance.subject,
                workflow_type=instance.workflow_type,
                new_status=plan.status if offset == last else InstanceStatus.PENDING,
                step_index=outcome.step_index,
                sequence=first_sequence + offset,
                occurred_at=now,
                step_outcome=outcome,
                actor_id=outcome.actor_id,
            )
        )
    return tuple(events)

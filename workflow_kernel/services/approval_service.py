"""
workflow_kernel.services.approval_service -- Approval instance lifecycle.

Responsibility:
    Starts approval instances (rule selection + chain materialisation)
    and applies approver decisions, cancellations and timeouts to them.
    Transition planning is delegated to the pure state machine in
    ``workflow_engines``; this service loads, persists, audits and
    collects the resulting events.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/,
    and the pure engines.

Invariants enforced:
    - Per-instance serialisation: every transition is one UPDATE guarded
      by the instance's optimistic version counter; outcomes are guarded
      by UNIQUE(instance_id, step_index).  A stale writer fails with
      StepAlreadyResolvedError and changes nothing.
    - At most one PENDING instance per subject.
    - Events are written to ``workflow_events`` in the same transaction as
      the transition.  Delivery to subscribers is the caller's job, after
      commit.

Failure modes:
    - ApprovalInstanceNotFoundError, AlreadyFinalizedError,
      DuplicateApprovalInstanceError, AutoAdvanceNotDueError.
    - NoApplicableRuleError, UnresolvableApproverError at start.
    - NotCurrentApproverError, NotSubjectOwnerError.
    - StepAlreadyResolvedError on a lost race or a stale step index.
      Approver decisions name the step being decided, so a resent
      decision never lands on the following step even when the same
      person holds both.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow_engines.rule_selector import select_rule
from workflow_engines.state_machine import (
    build_events,
    plan_auto_advance,
    plan_cancel,
    plan_decision,
    plan_start,
)
from workflow_engines.step_sequencer import materialize_chain
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.directory import Directory
from workflow_kernel.domain.events import InstanceTransitioned
from workflow_kernel.domain.instance import (
    ApprovalInstance,
    ApprovalStatusView,
    InstanceStatus,
    StepDecision,
    SubjectContext,
    SubjectRef,
    TransitionPlan,
)
from workflow_kernel.exceptions import (
    ApprovalInstanceNotFoundError,
    DuplicateApprovalInstanceError,
    StepAlreadyResolvedError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.approval_instance import (
    ApprovalInstanceModel,
    ResolvedStepModel,
    StepOutcomeModel,
)
from workflow_kernel.models.workflow_event import WorkflowEventModel
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.selectors.rule_selector import RuleSelector
from workflow_kernel.services.auditor_service import AuditorService

logger = get_logger("services.approval")

STALE_VERSION_REASON = "instance changed since it was loaded"
DUPLICATE_OUTCOME_REASON = "an outcome is already recorded for this step"


@dataclass(frozen=True)
class TransitionResult:
    """Instance state after a transition plus the events it produced."""

    instance: ApprovalInstance
    events: tuple[InstanceTransitioned, ...] = ()


def status_view(instance: ApprovalInstance) -> ApprovalStatusView:
    """Consumer-facing summary of an instance."""
    return ApprovalStatusView(
        instance_id=instance.instance_id,
        subject=instance.subject,
        overall_status=instance.status,
        current_step_index=instance.current_step_index,
        total_steps=len(instance.chain),
        current_approver_id=instance.current_approver_id,
        step_deadline_at=instance.step_deadline_at,
        history=instance.outcomes,
    )


class ApprovalService:
    """Session-scoped approval lifecycle operations.

    Flushes but never commits; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        directory: Directory,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._directory = directory
        self._clock = clock or SystemClock()
        self._instances = InstanceSelector(session)
        self._rules = RuleSelector(session)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(
        self,
        workflow_type: str,
        subject: SubjectRef,
        context: SubjectContext,
    ) -> TransitionResult:
        """Select a rule, materialise its chain and persist a new instance.

        Nothing is written when selection or resolution fails.
        """
        existing = self._instances.pending_for_subject(subject)
        if existing is not None:
            raise DuplicateApprovalInstanceError(
                subject.subject_type, str(subject.subject_id), str(existing.instance_id),
            )

        if context.department_id is None:
            requester = self._directory.get_employee(context.requester_id)
            if requester is not None and requester.department_id is not None:
                context = replace(context, department_id=requester.department_id)

        rule = select_rule(
            self._rules.candidates(context.company_id, workflow_type),
            workflow_type,
            context,
        )
        chain = materialize_chain(rule, context, self._directory)

        now = self._clock.now()
        plan = plan_start(chain, now)
        instance_id = uuid4()

        model = ApprovalInstanceModel(
            id=instance_id,
            company_id=context.company_id,
            workflow_type=workflow_type,
            subject_type=subject.subject_type,
            subject_id=subject.subject_id,
            requester_id=context.requester_id,
            rule_id=rule.rule_id,
            rule_version=rule.version,
            rule_name=rule.name,
            created_at=now,
            steps=[ResolvedStepModel.from_dto(s, instance_id) for s in chain],
        )
        self._write_plan(model, plan)
        self._session.add(model)
        try:
            self._session.flush()
        except IntegrityError:
            # Lost a race against another start for the same subject
            raise DuplicateApprovalInstanceError(
                subject.subject_type, str(subject.subject_id), "concurrent start",
            ) from None

        instance = model.to_dto()
        with LogContext.bind(instance_id=str(instance_id), workflow_type=workflow_type):
            self._auditor.record_approval_started(
                instance_id,
                context.requester_id,
                rule.rule_id,
                rule.version,
                str(subject),
                len(chain),
            )
            events = self._record_events(instance, plan, now, first_sequence=1)
            logger.info(
                "approval_started",
                extra={
                    "subject": str(subject),
                    "rule_id": str(rule.rule_id),
                    "rule_version": rule.version,
                    "chain_length": len(chain),
                    "pre_skipped": sum(1 for s in chain if s.pre_skipped),
                    "status": instance.status.value,
                },
            )
        return TransitionResult(instance, events)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(
        self,
        instance_id: UUID,
        actor_id: UUID,
        step_index: int,
        comment: str | None = None,
        override: bool = False,
    ) -> TransitionResult:
        """Approve step ``step_index``; any other current step is a conflict."""
        return self._decide(
            instance_id, actor_id, StepDecision.APPROVED, step_index, comment, override,
        )

    def reject(
        self,
        instance_id: UUID,
        actor_id: UUID,
        step_index: int,
        reason: str | None = None,
        override: bool = False,
    ) -> TransitionResult:
        return self._decide(
            instance_id, actor_id, StepDecision.REJECTED, step_index, reason, override,
        )

    def request_revision(
        self,
        instance_id: UUID,
        actor_id: UUID,
        step_index: int,
        comment: str | None = None,
        override: bool = False,
    ) -> TransitionResult:
        return self._decide(
            instance_id,
            actor_id,
            StepDecision.REVISION_REQUESTED,
            step_index,
            comment,
            override,
        )

    def cancel(
        self,
        instance_id: UUID,
        requester_id: UUID,
        reason: str | None = None,
    ) -> TransitionResult:
        model, instance = self._load(instance_id)
        now = self._clock.now()
        plan = plan_cancel(instance, requester_id, now, reason)
        return self._apply(model, instance, plan, now, actor_id=requester_id)

    def auto_advance(
        self,
        instance_id: UUID,
        expected_step_index: int | None = None,
    ) -> TransitionResult:
        model, instance = self._load(instance_id)
        now = self._clock.now()
        plan = plan_auto_advance(instance, now, expected_step_index=expected_step_index)
        return self._apply(model, instance, plan, now, actor_id=None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> ApprovalInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise ApprovalInstanceNotFoundError(str(instance_id))
        return instance

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, instance_id: UUID) -> tuple[ApprovalInstanceModel, ApprovalInstance]:
        model = self._session.get(ApprovalInstanceModel, instance_id)
        if model is None:
            raise ApprovalInstanceNotFoundError(str(instance_id))
        return model, model.to_dto()

    def _decide(
        self,
        instance_id: UUID,
        actor_id: UUID,
        decision: StepDecision,
        step_index: int,
        comment: str | None,
        override: bool,
    ) -> TransitionResult:
        model, instance = self._load(instance_id)
        now = self._clock.now()
        plan = plan_decision(
            instance,
            actor_id,
            decision,
            now,
            comment=comment,
            expected_step_index=step_index,
            override=override,
        )
        return self._apply(model, instance, plan, now, actor_id=actor_id)

    def _write_plan(self, model: ApprovalInstanceModel, plan: TransitionPlan) -> None:
        for outcome in plan.new_outcomes:
            model.outcomes.append(StepOutcomeModel.from_dto(outcome, model.id))

        model.status = plan.status.value
        model.current_step_index = plan.current_step_index
        if plan.status == InstanceStatus.PENDING:
            model.current_approver_id = model.steps[plan.current_step_index].approver_id
        else:
            model.current_approver_id = None
        model.step_entered_at = plan.step_entered_at
        model.step_deadline_at = plan.step_deadline_at
        model.resolved_at = plan.resolved_at
        model.resolved_by_id = plan.resolved_by_id
        model.resolution_comment = plan.resolution_comment

    def _apply(
        self,
        model: ApprovalInstanceModel,
        before: ApprovalInstance,
        plan: TransitionPlan,
        now: datetime,
        actor_id: UUID | None,
    ) -> TransitionResult:
        self._write_plan(model, plan)
        try:
            self._session.flush()
        except StaleDataError:
            raise StepAlreadyResolvedError(
                str(before.instance_id),
                before.current_step_index,
                STALE_VERSION_REASON,
            ) from None
        except IntegrityError:
            raise StepAlreadyResolvedError(
                str(before.instance_id),
                before.current_step_index,
                DUPLICATE_OUTCOME_REASON,
            ) from None

        instance = model.to_dto()
        with LogContext.bind(
            instance_id=str(instance.instance_id),
            workflow_type=instance.workflow_type,
            actor_id=str(actor_id) if actor_id else None,
        ):
            first_sequence = self._instances.next_event_sequence(instance.instance_id)
            events = self._record_events(instance, plan, now, first_sequence, actor_id)

            if plan.status == InstanceStatus.CANCELLED:
                logger.info(
                    "approval_cancelled",
                    extra={"step_index": plan.current_step_index},
                )
            elif plan.is_terminal:
                logger.info(
                    "approval_completed",
                    extra={
                        "status": plan.status.value,
                        "step_index": plan.current_step_index,
                    },
                )
        return TransitionResult(instance, events)

    def _record_events(
        self,
        instance: ApprovalInstance,
        plan: TransitionPlan,
        now: datetime,
        first_sequence: int,
        actor_id: UUID | None = None,
    ) -> tuple[InstanceTransitioned, ...]:
        events = build_events(instance, plan, now, first_sequence, actor_id)
        for event in events:
            self._session.add(WorkflowEventModel.from_dto(event))
            outcome = event.step_outcome
            if outcome is None:
                self._auditor.record_approval_cancelled(
                    instance.instance_id,
                    instance.requester_id,
                    event.step_index,
                    plan.resolution_comment,
                )
                continue
            self._auditor.record_step_recorded(
                instance.instance_id,
                outcome.step_index,
                outcome.decision.value,
                outcome.actor_id,
                event.new_status.value,
                override=outcome.override,
            )
            logger.info(
                "approval_step_recorded",
                extra={
                    "step_index": outcome.step_index,
                    "decision": outcome.decision.value,
                    "new_status": event.new_status.value,
                    "override": outcome.override,
                },
            )
        self._session.flush()
        return events

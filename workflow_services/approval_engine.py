"""
workflow_services.approval_engine -- The engine's public surface.

Responsibility:
    The single entry point consuming domains (leave, goals, profile
    changes, payroll...) use: start an approval, query it, act on it,
    and subscribe to its lifecycle events.

Architecture position:
    Services -- owns the unit of work.  Each call opens one session from
    the injected factory, runs one ApprovalService operation, commits,
    and only then hands the produced events to the EventBus.

Invariants enforced:
    - One transaction per operation; a failed operation writes nothing.
    - Subscribers run after commit with no transaction or lock held, so
      a slow or failing handler cannot block or undo a transition.
    - Every timestamp comes from the injected Clock.

Failure modes:
    - Every WorkflowKernelError raised by the service propagates
      unchanged after rollback.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.directory import Directory
from workflow_kernel.domain.events import InstanceTransitioned
from workflow_kernel.domain.instance import (
    ApprovalInstance,
    ApprovalStatusView,
    SubjectContext,
    SubjectRef,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.services.approval_service import (
    ApprovalService,
    TransitionResult,
    status_view,
)
from workflow_kernel.services.auditor_service import AuditorService
from workflow_kernel.services.event_bus import EventBus, EventHandler, Subscription

logger = get_logger("services.approval_engine")

T = TypeVar("T")


class ApprovalEngine:
    """Facade over ApprovalService with transaction and event delivery.

    Contract:
        - Mutating calls return the instance as committed.
        - ``subscribe()`` handlers receive ``InstanceTransitioned`` events
          after commit, in sequence order.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: Directory,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock or SystemClock()
        self._event_bus = event_bus or EventBus()

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def _service(self, session: Session) -> ApprovalService:
        return ApprovalService(
            session,
            AuditorService(session, self._clock),
            self._directory,
            self._clock,
        )

    def _transition(self, operation: Callable[[ApprovalService], TransitionResult]) -> ApprovalInstance:
        session = self._session_factory()
        try:
            result = operation(self._service(session))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self._event_bus.publish_all(result.events)
        return result.instance

    def _read(self, query: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return query(session)
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Lifecycle operations
    # -------------------------------------------------------------------------

    def start_approval(
        self,
        workflow_type: str,
        subject: SubjectRef,
        context: SubjectContext,
    ) -> ApprovalInstance:
        """Create the approval instance for ``subject``.

        Raises:
            NoApplicableRuleError: no rule governs this workflow type.
            UnresolvableApproverError: a required step has no approver.
            DuplicateApprovalInstanceError: subject already pending.
        """
        return self._transition(lambda svc: svc.start(workflow_type, subject, context))

    def approve(
        self,
        instance_id: UUID,
        actor_id: UUID,
        step_index: int,
        comment: str | None = None,
        override: bool = False,
    ) -> ApprovalInstance:
        """Approve the step the approver was shown.

        ``step_index`` is the step being decided (``current_step_index``
        as the caller last read it).  A resent decision therefore fails
        with StepAlreadyResolvedError instead of deciding the next step.
        """
        return self._transition(
            lambda svc: svc.approve(instance_id, actor_id, step_index, comment, override)
        )

    def reject(
        self,
        instance_id: UUID,
        actor_id: UUID,
        step_index: int,
        reason: str | None = None,
        override: bool = False,
    ) -> ApprovalInstance:
        return self._transition(
            lambda svc: svc.reject(instance_id, actor_id, step_index, reason, override)
        )

    def request_revision(
        self,
        instance_id: UUID,
        actor_id: UUID,
        step_index: int,
        comment: str | None = None,
        override: bool = False,
    ) -> ApprovalInstance:
        return self._transition(
            lambda svc: svc.request_revision(
                instance_id, actor_id, step_index, comment, override,
            )
        )

    def cancel(
        self,
        instance_id: UUID,
        requester_id: UUID,
        reason: str | None = None,
    ) -> ApprovalInstance:
        return self._transition(lambda svc: svc.cancel(instance_id, requester_id, reason))

    def auto_advance(
        self,
        instance_id: UUID,
        expected_step_index: int | None = None,
    ) -> ApprovalInstance:
        """Timeout-driven approval of the current step (scheduler only)."""
        return self._transition(lambda svc: svc.auto_advance(instance_id, expected_step_index))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> ApprovalInstance:
        return self._read(lambda s: self._service(s).get_instance(instance_id))

    def get_status(self, instance_id: UUID) -> ApprovalStatusView:
        return status_view(self.get_instance(instance_id))

    def pending_for_approver(
        self,
        approver_id: UUID,
        company_id: UUID | None = None,
    ) -> list[ApprovalInstance]:
        """Instances currently waiting on ``approver_id`` (the approver inbox)."""
        return self._read(
            lambda s: InstanceSelector(s).pending_for_approver(approver_id, company_id)
        )

    def instances_for_subject(self, subject: SubjectRef) -> list[ApprovalInstance]:
        return self._read(lambda s: InstanceSelector(s).for_subject(subject))

    def events_for_instance(self, instance_id: UUID) -> list[InstanceTransitioned]:
        return self._read(lambda s: InstanceSelector(s).events_for(instance_id))

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        handler: EventHandler,
        workflow_type: str | None = None,
    ) -> Subscription:
        return self._event_bus.subscribe(handler, workflow_type)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._event_bus.unsubscribe(subscription)

    def redeliver(self, instance_id: UUID, after_sequence: int = 0) -> int:
        """Publish persisted events again, e.g. after a subscriber outage.

        Returns the number of events published.
        """
        events = [
            e for e in self.events_for_instance(instance_id)
            if e.sequence > after_sequence
        ]
        self._event_bus.publish_all(events)
        logger.info(
            "events_redelivered",
            extra={"instance_id": str(instance_id), "count": len(events)},
        )
        return len(events)

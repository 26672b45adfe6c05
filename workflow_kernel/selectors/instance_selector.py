"""
Module: workflow_kernel.selectors.instance_selector
Responsibility: Read access to approval instances and their event log --
    status lookups, the approver inbox, subject history and the
    timeout scheduler's due-work query.
Architecture position: Kernel > Selectors.

The due-work query is the only state the timeout scheduler needs; it is
re-read from persistence on every sweep.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from workflow_kernel.domain.events import InstanceTransitioned
from workflow_kernel.domain.instance import ApprovalInstance, InstanceStatus, SubjectRef
from workflow_kernel.models.approval_instance import ApprovalInstanceModel
from workflow_kernel.models.workflow_event import WorkflowEventModel
from workflow_kernel.selectors.base import BaseSelector

_PENDING = InstanceStatus.PENDING.value


class InstanceSelector(BaseSelector[ApprovalInstanceModel]):
    """Selector for approval instances."""

    def get(self, instance_id: UUID) -> ApprovalInstance | None:
        model = self.session.get(ApprovalInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def due_for_auto_advance(
        self, now: datetime, limit: int | None = None,
    ) -> list[tuple[UUID, int]]:
        """(instance_id, current_step_index) of PENDING instances past their step deadline.

        Oldest deadline first.
        """
        stmt = (
            select(ApprovalInstanceModel.id, ApprovalInstanceModel.current_step_index)
            .where(
                ApprovalInstanceModel.status == _PENDING,
                ApprovalInstanceModel.step_deadline_at.is_not(None),
                ApprovalInstanceModel.step_deadline_at <= now,
            )
            .order_by(ApprovalInstanceModel.step_deadline_at, ApprovalInstanceModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(row.id, row.current_step_index) for row in self.session.execute(stmt)]

    def pending_for_approver(
        self,
        approver_id: UUID,
        company_id: UUID | None = None,
    ) -> list[ApprovalInstance]:
        """Instances waiting on ``approver_id`` right now, oldest first."""
        stmt = select(ApprovalInstanceModel).where(
            ApprovalInstanceModel.status == _PENDING,
            ApprovalInstanceModel.current_approver_id == approver_id,
        )
        if company_id is not None:
            stmt = stmt.where(ApprovalInstanceModel.company_id == company_id)
        stmt = stmt.order_by(ApprovalInstanceModel.created_at, ApprovalInstanceModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def for_subject(self, subject: SubjectRef) -> list[ApprovalInstance]:
        """Every instance ever started for ``subject``, newest first."""
        rows = self.session.execute(
            select(ApprovalInstanceModel)
            .where(
                ApprovalInstanceModel.subject_type == subject.subject_type,
                ApprovalInstanceModel.subject_id == subject.subject_id,
            )
            .order_by(ApprovalInstanceModel.created_at.desc(), ApprovalInstanceModel.id)
        ).scalars().all()
        return [m.to_dto() for m in rows]

    def pending_for_subject(self, subject: SubjectRef) -> ApprovalInstance | None:
        model = self.session.execute(
            select(ApprovalInstanceModel).where(
                ApprovalInstanceModel.subject_type == subject.subject_type,
                ApprovalInstanceModel.subject_id == subject.subject_id,
                ApprovalInstanceModel.status == _PENDING,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def events_for(self, instance_id: UUID) -> list[InstanceTransitioned]:
        """Persisted events of one instance in sequence order."""
        rows = self.session.execute(
            select(WorkflowEventModel)
            .where(WorkflowEventModel.instance_id == instance_id)
            .order_by(WorkflowEventModel.sequence)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def next_event_sequence(self, instance_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(WorkflowEventModel.sequence)).where(
                WorkflowEventModel.instance_id == instance_id,
            )
        ).scalar_one()
        return (current or 0) + 1

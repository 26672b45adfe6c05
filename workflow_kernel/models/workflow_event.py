"""
Module: workflow_kernel.models.workflow_event
Responsibility: Persisted log of InstanceTransitioned events.

Architecture position: Kernel > Models.  May import from db/base.py only.

Events are written in the same transaction as the transition that
produced them, so the log never disagrees with instance state.  The
in-process EventBus dispatches them after commit; polling consumers and
redelivery read this table.

Invariants enforced:
    - ``sequence`` is contiguous per instance: UNIQUE(instance_id, sequence).
    - One event per (instance_id, step_index, kind): the consumer dedupe key.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.events import InstanceTransitioned


class WorkflowEventModel(Base):
    """One persisted lifecycle event."""

    __tablename__ = "workflow_events"

    __table_args__ = (
        UniqueConstraint("instance_id", "sequence", name="uq_workflow_events_sequence"),
        UniqueConstraint(
            "instance_id", "step_index", "kind",
            name="uq_workflow_events_dedupe",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_instances.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    # Serialised StepOutcome; NULL for cancellations
    outcome: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowEvent {self.instance_id}#{self.sequence} "
            f"{self.kind} -> {self.new_status}>"
        )

    def to_dto(self) -> InstanceTransitioned:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.db.types import ensure_utc
        from workflow_kernel.domain.events import InstanceTransitioned as EventDTO
        from workflow_kernel.domain.instance import (
            InstanceStatus,
            StepDecision,
            StepOutcome,
            SubjectRef,
        )

        outcome = None
        if self.outcome is not None:
            actor = self.outcome.get("actor_id")
            outcome = StepOutcome(
                step_index=self.outcome["step_index"],
                decision=StepDecision(self.outcome["decision"]),
                decided_at=ensure_utc(datetime.fromisoformat(self.outcome["decided_at"])),
                actor_id=UUID(actor) if actor else None,
                comment=self.outcome.get("comment"),
                override=bool(self.outcome.get("override", False)),
            )

        return EventDTO(
            instance_id=self.instance_id,
            subject=SubjectRef(self.subject_type, self.subject_id),
            workflow_type=self.workflow_type,
            new_status=InstanceStatus(self.new_status),
            step_index=self.step_index,
            sequence=self.sequence,
            occurred_at=self.occurred_at,
            step_outcome=outcome,
            actor_id=self.actor_id,
        )

    @classmethod
    def from_dto(cls, dto: InstanceTransitioned) -> WorkflowEventModel:
        """Create ORM model from domain DTO."""
        outcome = None
        if dto.step_outcome is not None:
            o = dto.step_outcome
            outcome = {
                "step_index": o.step_index,
                "decision": o.decision.value,
                "decided_at": o.decided_at.isoformat(),
                "actor_id": str(o.actor_id) if o.actor_id else None,
                "comment": o.comment,
                "override": o.override,
            }
        return cls(
            instance_id=dto.instance_id,
            sequence=dto.sequence,
            step_index=dto.step_index,
            kind=dto.dedupe_key[2],
            new_status=dto.new_status.value,
            workflow_type=dto.workflow_type,
            subject_type=dto.subject.subject_type,
            subject_id=dto.subject.subject_id,
            actor_id=dto.actor_id,
            occurred_at=dto.occurred_at,
            outcome=outcome,
        )

"""
Module: workflow_kernel.models.approval_instance
Responsibility: ORM persistence for approval instances, their frozen chain
    of resolved steps and the per-step outcomes.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Valid status values (check constraint).
    - Per-instance serialisation: ``version`` is SQLAlchemy's optimistic
      version counter, so two writers of the same instance version cannot
      both commit.
    - One outcome per step: UNIQUE(instance_id, step_index).
    - One PENDING instance per subject (partial unique index).
    - Resolved steps and outcomes are immutable once flushed (ORM
      listeners below).

Failure modes:
    - StaleDataError when another transaction already moved the instance.
    - IntegrityError on a second outcome for a step, or a second PENDING
      instance for a subject.
    - ImmutabilityViolationError on UPDATE/DELETE of a step or outcome.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.instance import (
        ApprovalInstance,
        ResolvedStep,
        StepOutcome,
    )


class ApprovalInstanceModel(Base):
    """Persistent approval instance.

    Contract:
        Mutated only by ApprovalService applying a TransitionPlan.
        Terminal statuses are never changed again.
    """

    __tablename__ = "approval_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_approval_instances_valid_status",
        ),
        CheckConstraint(
            "current_step_index >= 0",
            name="ck_approval_instances_step_index",
        ),
        Index(
            "ix_approval_instances_pending_subject",
            "subject_type", "subject_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_approval_instances_subject", "subject_type", "subject_id", "created_at"),
        # Timeout sweep: PENDING and due
        Index("ix_approval_instances_due", "status", "step_deadline_at"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_rules.id"),
        nullable=False,
    )
    rule_version: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    current_step_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    step_entered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    step_deadline_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolution_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    steps: Mapped[list["ResolvedStepModel"]] = relationship(
        "ResolvedStepModel",
        back_populates="instance",
        order_by="ResolvedStepModel.step_index",
        lazy="selectin",
    )

    outcomes: Mapped[list["StepOutcomeModel"]] = relationship(
        "StepOutcomeModel",
        back_populates="instance",
        order_by="StepOutcomeModel.step_index",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalInstance {self.id} {self.subject_type}:{self.subject_id} "
            f"status={self.status} step={self.current_step_index}>"
        )

    def to_dto(self) -> ApprovalInstance:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.instance import (
            ApprovalInstance as ApprovalInstanceDTO,
            InstanceStatus,
            SubjectRef,
        )

        return ApprovalInstanceDTO(
            instance_id=self.id,
            company_id=self.company_id,
            workflow_type=self.workflow_type,
            subject=SubjectRef(self.subject_type, self.subject_id),
            requester_id=self.requester_id,
            rule_id=self.rule_id,
            rule_version=self.rule_version,
            rule_name=self.rule_name,
            chain=tuple(s.to_dto() for s in self.steps),
            status=InstanceStatus(self.status),
            current_step_index=self.current_step_index,
            outcomes=tuple(o.to_dto() for o in self.outcomes),
            step_entered_at=self.step_entered_at,
            step_deadline_at=self.step_deadline_at,
            created_at=self.created_at,
            resolved_at=self.resolved_at,
            resolved_by_id=self.resolved_by_id,
            resolution_comment=self.resolution_comment,
            version=self.version,
        )


class ResolvedStepModel(Base):
    """One frozen step of an instance's chain. Immutable."""

    __tablename__ = "approval_resolved_steps"

    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_resolved_steps_index"),
        Index("ix_resolved_steps_approver", "approver_id"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_instances.id"),
        nullable=False,
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    employee_ref: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    auto_approve_after_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pre_skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    instance: Mapped["ApprovalInstanceModel"] = relationship(
        "ApprovalInstanceModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ResolvedStep {self.instance_id}#{self.step_index} "
            f"{self.approver_kind} approver={self.approver_id}>"
        )

    def to_dto(self) -> ResolvedStep:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.approver import ApproverKind
        from workflow_kernel.domain.instance import ResolvedStep as ResolvedStepDTO

        return ResolvedStepDTO(
            step_index=self.step_index,
            step_order=self.step_order,
            approver_kind=ApproverKind(self.approver_kind),
            approver_id=self.approver_id,
            approver_name=self.approver_name,
            role_code=self.role_code,
            employee_ref=self.employee_ref,
            auto_approve_after_hours=self.auto_approve_after_hours,
            can_skip=self.can_skip,
            pre_skipped=self.pre_skipped,
        )

    @classmethod
    def from_dto(cls, dto: ResolvedStep, instance_id: UUID) -> ResolvedStepModel:
        """Create ORM model from domain DTO."""
        return cls(
            instance_id=instance_id,
            step_index=dto.step_index,
            step_order=dto.step_order,
            approver_kind=dto.approver_kind.value,
            approver_id=dto.approver_id,
            approver_name=dto.approver_name,
            role_code=dto.role_code,
            employee_ref=dto.employee_ref,
            auto_approve_after_hours=dto.auto_approve_after_hours,
            can_skip=dto.can_skip,
            pre_skipped=dto.pre_skipped,
        )


class StepOutcomeModel(Base):
    """The recorded outcome of one step. Append-only."""

    __tablename__ = "approval_step_outcomes"

    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_step_outcomes_step"),
        CheckConstraint(
            "decision IN ('APPROVED', 'REJECTED', 'REVISION_REQUESTED', "
            "'SKIPPED', 'AUTO_APPROVED')",
            name="ck_step_outcomes_valid_decision",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_instances.id"),
        nullable=False,
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)
    override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    instance: Mapped["ApprovalInstanceModel"] = relationship(
        "ApprovalInstanceModel",
        back_populates="outcomes",
    )

    def __repr__(self) -> str:
        return (
            f"<StepOutcome {self.instance_id}#{self.step_index} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> StepOutcome:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.instance import StepDecision
        from workflow_kernel.domain.instance import StepOutcome as StepOutcomeDTO

        return StepOutcomeDTO(
            step_index=self.step_index,
            decision=StepDecision(self.decision),
            decided_at=self.decided_at,
            actor_id=self.actor_id,
            comment=self.comment,
            override=self.override,
        )

    @classmethod
    def from_dto(cls, dto: StepOutcome, instance_id: UUID) -> StepOutcomeModel:
        """Create ORM model from domain DTO."""
        return cls(
            instance_id=instance_id,
            step_index=dto.step_index,
            decision=dto.decision.value,
            actor_id=dto.actor_id,
            comment=dto.comment,
            decided_at=dto.decided_at,
            override=dto.override,
        )


# =============================================================================
# ORM-Level Immutability for the frozen chain and outcomes
# =============================================================================


@event.listens_for(ResolvedStepModel, "before_update")
def prevent_resolved_step_update(mapper, connection, target):
    """Prevent updates to a materialised chain step."""
    raise ImmutabilityViolationError(
        entity_type="ResolvedStep",
        entity_id=str(target.id),
        reason="Resolved steps are frozen at materialisation -- cannot modify",
    )


@event.listens_for(ResolvedStepModel, "before_delete")
def prevent_resolved_step_delete(mapper, connection, target):
    """Prevent deletion of a materialised chain step."""
    raise ImmutabilityViolationError(
        entity_type="ResolvedStep",
        entity_id=str(target.id),
        reason="Resolved steps are frozen at materialisation -- cannot delete",
    )


@event.listens_for(StepOutcomeModel, "before_update")
def prevent_outcome_update(mapper, connection, target):
    """Prevent updates to step outcome records."""
    raise ImmutabilityViolationError(
        entity_type="StepOutcome",
        entity_id=str(target.id),
        reason="Step outcomes are immutable -- cannot modify",
    )


@event.listens_for(StepOutcomeModel, "before_delete")
def prevent_outcome_delete(mapper, connection, target):
    """Prevent deletion of step outcome records."""
    raise ImmutabilityViolationError(
        entity_type="StepOutcome",
        entity_id=str(target.id),
        reason="Step outcomes are immutable -- cannot delete",
    )

"""
Module: workflow_kernel.models.workflow_rule
Responsibility: ORM persistence for workflow rules and their step templates.

Architecture position: Kernel > Models.  May import from db/base.py only
(domain types are imported lazily inside ``to_dto``).

Invariants enforced:
    - Step order is unique per rule: UNIQUE(rule_id, step_order).
    - ``version`` is an optimistic counter managed by the admin service;
      concurrent edits of the same rule fail with StaleDataError.
    - Rules are soft-deleted (``deleted_at``) so materialised instances
      keep a valid rule reference.

Failure modes:
    - IntegrityError on a duplicate step order.
    - StaleDataError when two administrators edit the same rule version.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.rules import StepTemplate, WorkflowRule


class WorkflowRuleModel(TrackedBase):
    """Persistent workflow rule.

    Contract:
        Only the admin service writes rules.  Every edit increments
        ``version``.
    """

    __tablename__ = "workflow_rules"

    __table_args__ = (
        Index("ix_workflow_rules_selection", "company_id", "workflow_type", "is_active"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    steps: Mapped[list["StepTemplateModel"]] = relationship(
        "StepTemplateModel",
        back_populates="rule",
        order_by="StepTemplateModel.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<WorkflowRule {self.id} {self.workflow_type} "
            f"'{self.name}' v{self.version}>"
        )

    def to_dto(self) -> WorkflowRule:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.rules import RuleConditions
        from workflow_kernel.domain.rules import WorkflowRule as WorkflowRuleDTO

        return WorkflowRuleDTO(
            rule_id=self.id,
            company_id=self.company_id,
            workflow_type=self.workflow_type,
            name=self.name,
            steps=tuple(s.to_dto() for s in self.steps),
            is_active=self.is_active,
            conditions=RuleConditions.from_dict(self.conditions),
            version=self.version,
            created_at=self.created_at,
            deleted_at=self.deleted_at,
        )


class StepTemplateModel(Base):
    """Persistent step template. Replaced wholesale when a rule is edited."""

    __tablename__ = "workflow_step_templates"

    __table_args__ = (
        UniqueConstraint("rule_id", "step_order", name="uq_step_templates_order"),
        CheckConstraint("step_order >= 1", name="ck_step_templates_order_positive"),
        CheckConstraint(
            "auto_approve_after_hours IS NULL OR auto_approve_after_hours > 0",
            name="ck_step_templates_timeout",
        ),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_rules.id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    role_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    employee_ref: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    auto_approve_after_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rule: Mapped["WorkflowRuleModel"] = relationship(
        "WorkflowRuleModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<StepTemplate {self.rule_id}#{self.step_order} {self.approver_kind}>"

    def to_dto(self) -> StepTemplate:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.approver import approver_from_parts
        from workflow_kernel.domain.rules import StepTemplate as StepTemplateDTO

        return StepTemplateDTO(
            step_order=self.step_order,
            approver=approver_from_parts(
                self.approver_kind,
                self.role_code,
                self.employee_ref,
                step_order=self.step_order,
            ),
            auto_approve_after_hours=self.auto_approve_after_hours,
            can_skip=self.can_skip,
        )

    @classmethod
    def from_dto(cls, dto: StepTemplate) -> StepTemplateModel:
        """Create ORM model from domain DTO."""
        from workflow_kernel.domain.approver import approver_to_parts

        kind, role_code, employee_ref = approver_to_parts(dto.approver)
        return cls(
            step_order=dto.step_order,
            approver_kind=kind.value,
            role_code=role_code,
            employee_ref=employee_ref,
            auto_approve_after_hours=dto.auto_approve_after_hours,
            can_skip=dto.can_skip,
        )

"""
Workflow rule domain types (``workflow_kernel.domain.rules``).

Responsibility
--------------
Pure value objects for administrator-authored approval policies: the
``WorkflowRule`` with its ordered ``StepTemplate`` chain and optional
``RuleConditions``, plus the save-time validation that both the admin
service and the YAML config layer run before anything is persisted.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Step order is 1-based, unique and contiguous.
* Approver/reference pairing is valid by construction (see ``approver``).
* ``auto_approve_after_hours`` is ``None`` (human decision required) or a
  positive number of hours.
* ``min_amount < max_amount`` when both are set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from workflow_kernel.domain.approver import ApproverKind, ApproverSpec
from workflow_kernel.exceptions import InvalidRuleError, InvalidStepTemplateError


@dataclass(frozen=True)
class StepTemplate:
    """One position in a rule's chain, before any subject is known."""

    step_order: int
    approver: ApproverSpec
    auto_approve_after_hours: int | None = None
    can_skip: bool = False

    @property
    def approver_kind(self) -> ApproverKind:
        return self.approver.kind


@dataclass(frozen=True)
class RuleConditions:
    """Applicability conditions of a rule.

    Every field left at its default is unconstrained.  Amounts match the
    half-open range ``[min_amount, max_amount)``.
    """

    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    department_ids: frozenset[UUID] = frozenset()
    requester_ids: frozenset[UUID] = frozenset()

    @property
    def constraint_count(self) -> int:
        """Number of constrained dimensions (higher = more specific)."""
        return sum((
            self.min_amount is not None,
            self.max_amount is not None,
            bool(self.department_ids),
            bool(self.requester_ids),
        ))

    @property
    def is_unconditional(self) -> bool:
        return self.constraint_count == 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation used for persistence and audit payloads."""
        return {
            "min_amount": str(self.min_amount) if self.min_amount is not None else None,
            "max_amount": str(self.max_amount) if self.max_amount is not None else None,
            "department_ids": sorted(str(d) for d in self.department_ids),
            "requester_ids": sorted(str(r) for r in self.requester_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RuleConditions:
        if not data:
            return cls()
        return cls(
            min_amount=Decimal(str(data["min_amount"])) if data.get("min_amount") is not None else None,
            max_amount=Decimal(str(data["max_amount"])) if data.get("max_amount") is not None else None,
            department_ids=frozenset(UUID(str(d)) for d in data.get("department_ids") or ()),
            requester_ids=frozenset(UUID(str(r)) for r in data.get("requester_ids") or ()),
        )


@dataclass(frozen=True)
class WorkflowRule:
    """A named, versioned approval policy for one workflow type."""

    rule_id: UUID
    company_id: UUID
    workflow_type: str
    name: str
    steps: tuple[StepTemplate, ...]
    is_active: bool = True
    conditions: RuleConditions = field(default_factory=RuleConditions)
    version: int = 1
    created_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def is_selectable(self) -> bool:
        return self.is_active and self.deleted_at is None


@dataclass(frozen=True)
class RulePage:
    """One page of a rule listing."""

    items: tuple[WorkflowRule, ...]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


# =========================================================================
# Save-time validation
# =========================================================================


def validate_step_templates(steps: tuple[StepTemplate, ...] | list[StepTemplate]) -> None:
    """Validate a chain of step templates.

    Raises:
        InvalidStepTemplateError: empty chain, non-contiguous order, or a
            negative timeout.
    """
    if not steps:
        raise InvalidStepTemplateError(None, "A rule needs at least one step")

    orders = [s.step_order for s in steps]
    expected = list(range(1, len(steps) + 1))
    if sorted(orders) != expected:
        raise InvalidStepTemplateError(
            None,
            f"Step order must be contiguous starting at 1, got {orders}",
        )

    for step in steps:
        hours = step.auto_approve_after_hours
        if hours is not None and hours <= 0:
            raise InvalidStepTemplateError(
                step.step_order,
                f"auto_approve_after_hours must be a positive number of hours, got {hours}",
            )


def validate_conditions(rule_name: str, conditions: RuleConditions) -> None:
    """Validate rule applicability conditions.

    Raises:
        InvalidRuleError: inverted or empty amount range, negative bound.
    """
    lo, hi = conditions.min_amount, conditions.max_amount
    if lo is not None and lo < 0:
        raise InvalidRuleError(rule_name, f"min_amount must be >= 0, got {lo}")
    if lo is not None and hi is not None and lo >= hi:
        raise InvalidRuleError(
            rule_name, f"min_amount ({lo}) must be below max_amount ({hi})",
        )


def ordered_steps(steps: tuple[StepTemplate, ...] | list[StepTemplate]) -> tuple[StepTemplate, ...]:
    """Return the templates sorted by step order."""
    return tuple(sorted(steps, key=lambda s: s.step_order))

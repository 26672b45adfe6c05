"""
Approval instance domain types (``workflow_kernel.domain.instance``).

Responsibility
--------------
Pure value objects for one subject's progress through a materialised
approval chain: the lifecycle statuses, the frozen ``ResolvedStep`` chain,
append-only ``StepOutcome`` records, the ``ApprovalInstance`` snapshot and
the ``TransitionPlan`` the state machine hands back to the service.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``INSTANCE_TRANSITIONS`` defines the only valid status changes.
  Terminal statuses have no outgoing edges.
* ``current_step_index`` only increases; at most one outcome per step.
* A ``ResolvedStep`` carries a copied approver id (value semantics); it
  never points back into directory data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from workflow_kernel.domain.approver import ApproverKind

# Recorded on a pre-skipped step when its turn arrives.
SKIP_REASON_UNRESOLVED = "approver unresolved"
# Recorded on a timeout-driven approval.
AUTO_APPROVE_REASON = "auto-approved due to timeout"


# =========================================================================
# Lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Overall status of an approval instance."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.PENDING,
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})


class StepDecision(str, Enum):
    """Outcome recorded against one step."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    SKIPPED = "SKIPPED"
    AUTO_APPROVED = "AUTO_APPROVED"


# Decisions that move the chain forward.
ADVANCING_DECISIONS: frozenset[StepDecision] = frozenset({
    StepDecision.APPROVED,
    StepDecision.SKIPPED,
    StepDecision.AUTO_APPROVED,
})


# =========================================================================
# Subject
# =========================================================================


@dataclass(frozen=True)
class SubjectRef:
    """Weak reference to the domain entity under approval (type + id)."""

    subject_type: str
    subject_id: UUID

    def __str__(self) -> str:
        return f"{self.subject_type}:{self.subject_id}"


@dataclass(frozen=True)
class SubjectContext:
    """Attributes of the subject used for rule selection and resolution.

    ``requester_id`` is the employee who submitted the request and the
    only actor allowed to cancel it.  ``department_id`` may be omitted;
    the engine then reads it from the directory.
    """

    requester_id: UUID
    company_id: UUID
    department_id: UUID | None = None
    amount: Decimal | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


# =========================================================================
# Chain and outcomes
# =========================================================================


@dataclass(frozen=True)
class ResolvedStep:
    """A step template frozen with its concrete approver for one instance."""

    step_index: int
    step_order: int
    approver_kind: ApproverKind
    approver_id: UUID | None
    approver_name: str | None = None
    role_code: str | None = None
    employee_ref: UUID | None = None
    auto_approve_after_hours: int | None = None
    can_skip: bool = False
    pre_skipped: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.approver_id is not None


@dataclass(frozen=True)
class StepOutcome:
    """The single recorded outcome of one step. Immutable."""

    step_index: int
    decision: StepDecision
    decided_at: datetime
    actor_id: UUID | None = None
    comment: str | None = None
    override: bool = False

    @property
    def is_engine_decision(self) -> bool:
        return self.actor_id is None


@dataclass(frozen=True)
class ApprovalInstance:
    """Immutable snapshot of one approval instance."""

    instance_id: UUID
    company_id: UUID
    workflow_type: str
    subject: SubjectRef
    requester_id: UUID
    rule_id: UUID
    rule_version: int
    rule_name: str
    chain: tuple[ResolvedStep, ...]
    status: InstanceStatus = InstanceStatus.PENDING
    current_step_index: int = 0
    outcomes: tuple[StepOutcome, ...] = ()
    step_entered_at: datetime | None = None
    step_deadline_at: datetime | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by_id: UUID | None = None
    resolution_comment: str | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> ResolvedStep | None:
        if self.is_terminal or self.current_step_index >= len(self.chain):
            return None
        return self.chain[self.current_step_index]

    @property
    def current_approver_id(self) -> UUID | None:
        step = self.current_step
        return step.approver_id if step is not None else None

    def outcome_for(self, step_index: int) -> StepOutcome | None:
        for outcome in self.outcomes:
            if outcome.step_index == step_index:
                return outcome
        return None


@dataclass(frozen=True)
class ApprovalStatusView:
    """What ``get_status`` returns to consumers."""

    instance_id: UUID
    subject: SubjectRef
    overall_status: InstanceStatus
    current_step_index: int
    total_steps: int
    current_approver_id: UUID | None
    step_deadline_at: datetime | None
    history: tuple[StepOutcome, ...]


# =========================================================================
# State machine output
# =========================================================================


@dataclass(frozen=True)
class TransitionPlan:
    """Result of planning one state machine operation.

    The service applies it to the persisted instance in one optimistic
    write.  ``new_outcomes`` are in step order and never overlap the
    outcomes already recorded.
    """

    status: InstanceStatus
    current_step_index: int
    new_outcomes: tuple[StepOutcome, ...]
    step_entered_at: datetime | None
    step_deadline_at: datetime | None
    resolved_at: datetime | None = None
    resolved_by_id: UUID | None = None
    resolution_comment: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

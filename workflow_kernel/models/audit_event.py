"""
Module: workflow_kernel.models.audit_event
Responsibility: ORM persistence for the per-entity audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity per entity: hash = H(entity_type | entity_id |
      action | payload_hash | prev_hash).  Validated by AuditorService.
    - ``seq`` is contiguous per entity: UNIQUE(entity_type, entity_id, seq).

The chain is per entity rather than global so that transitions on
different approval instances never contend for a shared counter.

Minimum coverage (each action type generates at least one AuditEvent):
    - RULE_CREATED, RULE_UPDATED, RULE_DELETED
    - APPROVAL_STARTED, APPROVAL_STEP_RECORDED, APPROVAL_CANCELLED
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

# Actor recorded for engine-driven actions (timeouts, skips).
SYSTEM_ACTOR_ID = UUID(int=0)


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Rule administration
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"

    # Instance lifecycle
    APPROVAL_STARTED = "approval_started"
    APPROVAL_STEP_RECORDED = "approval_step_recorded"
    APPROVAL_CANCELLED = "approval_cancelled"


class AuditEvent(Base):
    """
    Audit event with a per-entity hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.

    Guarantees:
        - prev_hash is None only for the first event of an entity.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "seq", name="uq_audit_entity_seq"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}#{self.seq}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Prevent updates to audit records."""
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot modify",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Prevent deletion of audit records."""
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot delete",
    )

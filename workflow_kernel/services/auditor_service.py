"""
AuditorService -- tamper-evident audit trail for rules and instances.

Responsibility:
    Creates immutable, hash-chained audit events for every rule
    administration action and every approval instance transition.
    Provides chain validation for tamper detection and trace queries for
    review.

Architecture position:
    Kernel > Services -- imperative shell, called by RuleAdminService and
    ApprovalService.

Invariants enforced:
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).
    - Chain integrity per entity: ``hash = H(entity_type, entity_id,
      action, payload_hash, prev_hash)``.  Every event carries a link to
      the previous event of the same entity.

Failure modes:
    - AuditChainBrokenError from ``validate_chain`` when a recomputed
      hash or link does not match.
    - IntegrityError when two transactions append to the same entity
      concurrently (UNIQUE(entity_type, entity_id, seq)).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.exceptions import AuditChainBrokenError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.audit_event import SYSTEM_ACTOR_ID, AuditAction, AuditEvent
from workflow_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

RULE_ENTITY = "WorkflowRule"
INSTANCE_ENTITY = "ApprovalInstance"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for an entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()

    def _last_event(self, entity_type: str, entity_id: UUID) -> AuditEvent | None:
        return self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID | None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append an audit event to the entity's chain and flush it.

        ``actor_id=None`` records the engine itself (SYSTEM_ACTOR_ID).
        """
        last = self._last_event(entity_type, entity_id)
        seq = last.seq + 1 if last else 1
        prev_hash = last.hash if last else None

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            seq=seq,
            action=action.value,
            actor_id=actor_id or SYSTEM_ACTOR_ID,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.debug(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    # Rule administration

    def record_rule_created(
        self, rule_id: UUID, actor_id: UUID, payload: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            RULE_ENTITY, rule_id, AuditAction.RULE_CREATED, actor_id, payload,
        )

    def record_rule_updated(
        self, rule_id: UUID, actor_id: UUID, payload: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            RULE_ENTITY, rule_id, AuditAction.RULE_UPDATED, actor_id, payload,
        )

    def record_rule_deleted(self, rule_id: UUID, actor_id: UUID, version: int) -> AuditEvent:
        return self._create_audit_event(
            RULE_ENTITY, rule_id, AuditAction.RULE_DELETED, actor_id, {"version": version},
        )

    # Instance lifecycle

    def record_approval_started(
        self,
        instance_id: UUID,
        requester_id: UUID,
        rule_id: UUID,
        rule_version: int,
        subject: str,
        chain_length: int,
    ) -> AuditEvent:
        """Record that an instance was materialised."""
        return self._create_audit_event(
            INSTANCE_ENTITY,
            instance_id,
            AuditAction.APPROVAL_STARTED,
            requester_id,
            {
                "rule_id": str(rule_id),
                "rule_version": rule_version,
                "subject": subject,
                "chain_length": chain_length,
            },
        )

    def record_step_recorded(
        self,
        instance_id: UUID,
        step_index: int,
        decision: str,
        actor_id: UUID | None,
        new_status: str,
        override: bool = False,
    ) -> AuditEvent:
        """Record one step outcome and the status it left the instance in."""
        return self._create_audit_event(
            INSTANCE_ENTITY,
            instance_id,
            AuditAction.APPROVAL_STEP_RECORDED,
            actor_id,
            {
                "step_index": step_index,
                "decision": decision,
                "new_status": new_status,
                "override": override,
            },
        )

    def record_approval_cancelled(
        self,
        instance_id: UUID,
        requester_id: UUID,
        step_index: int,
        reason: str | None,
    ) -> AuditEvent:
        return self._create_audit_event(
            INSTANCE_ENTITY,
            instance_id,
            AuditAction.APPROVAL_CANCELLED,
            requester_id,
            {"step_index": step_index, "reason": reason},
        )

    # Queries

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """Full audit trace of one entity in sequence order."""
        rows = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=r.seq,
                    action=AuditAction(r.action),
                    occurred_at=r.occurred_at,
                    actor_id=r.actor_id,
                    payload=r.payload or {},
                    hash=r.hash,
                )
                for r in rows
            ),
        )

    def validate_chain(self, entity_type: str, entity_id: UUID) -> bool:
        """
        Recompute every hash of the entity's chain.

        Raises:
            AuditChainBrokenError: on the first mismatch.
        """
        rows = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for row in rows:
            if row.prev_hash != prev_hash:
                raise AuditChainBrokenError(
                    entity_type, str(entity_id), row.seq, "prev_hash does not link",
                )
            if hash_payload(row.payload or {}) != row.payload_hash:
                raise AuditChainBrokenError(
                    entity_type, str(entity_id), row.seq, "payload hash mismatch",
                )
            expected = hash_audit_event(
                entity_type=row.entity_type,
                entity_id=str(row.entity_id),
                action=row.action,
                payload_hash=row.payload_hash,
                prev_hash=row.prev_hash,
            )
            if expected != row.hash:
                raise AuditChainBrokenError(
                    entity_type, str(entity_id), row.seq, "event hash mismatch",
                )
            prev_hash = row.hash
        return True

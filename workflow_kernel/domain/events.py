"""
Lifecycle events (``workflow_kernel.domain.events``).

Responsibility
--------------
The one event the engine publishes: ``InstanceTransitioned``.  One event
is produced per recorded step outcome, plus one for a cancellation.
Delivery is at-least-once; consumers de-duplicate by ``dedupe_key``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from workflow_kernel.domain.instance import InstanceStatus, StepOutcome, SubjectRef


@dataclass(frozen=True)
class InstanceTransitioned:
    """An approval instance recorded an outcome or was cancelled.

    ``new_status`` is the overall status after the transition (a
    ``PENDING`` event means the chain moved on to the next step).
    ``step_outcome`` is None only for cancellations.
    """

    instance_id: UUID
    subject: SubjectRef
    workflow_type: str
    new_status: InstanceStatus
    step_index: int
    sequence: int
    occurred_at: datetime
    step_outcome: StepOutcome | None = None
    actor_id: UUID | None = None

    @property
    def dedupe_key(self) -> tuple[UUID, int, str]:
        kind = self.step_outcome.decision.value if self.step_outcome else "CANCELLED"
        return (self.instance_id, self.step_index, kind)

    @property
    def is_final(self) -> bool:
        return self.new_status != InstanceStatus.PENDING

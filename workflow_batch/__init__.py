"""Background jobs for the approval workflow engine (step timeouts)."""

from workflow_batch.timeout_scheduler import SweepResult, TimeoutScheduler

__all__ = [
    "SweepResult",
    "TimeoutScheduler",
]

"""
TimeoutScheduler -- periodic auto-approval of overdue steps.

Contract:
    Each ``tick()`` reads the PENDING instances whose current step
    deadline has passed and calls ``ApprovalEngine.auto_advance`` for
    each one, in its own transaction.

Architecture: workflow_batch.  Uses the kernel's InstanceSelector for the
    due-work query and the ApprovalEngine facade for the transition (so
    events are delivered exactly like any other transition).

Invariants enforced:
    - Stateless: nothing is cached between ticks; due work is re-read
      from persistence every time, so any number of scheduler processes
      may run at once.
    - Exactly once per step: the step index read by the sweep is passed
      as ``expected_step_index``, and the instance's optimistic lock makes
      a concurrent second sweeper lose cleanly (counted as skipped).
    - All timestamps from the injected Clock.
    - Graceful shutdown: the stop signal is checked between instances.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.exceptions import (
    AlreadyFinalizedError,
    AutoAdvanceNotDueError,
    StepAlreadyResolvedError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_services.approval_engine import ApprovalEngine

logger = get_logger("batch.timeout_scheduler")

# Outcomes of losing a race with a human approver or another sweeper.
_BENIGN_ERRORS = (AutoAdvanceNotDueError, StepAlreadyResolvedError, AlreadyFinalizedError)


@dataclass(frozen=True)
class SweepResult:
    """Counters for one sweep."""

    scanned: int = 0
    advanced: int = 0
    skipped: int = 0
    failed: int = 0


class TimeoutScheduler:
    """In-process polling scheduler for step timeouts.

    Contract:
        - ``tick()`` runs one sweep and returns its SweepResult.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); concurrent
          sweepers are tolerated, not coordinated.
    """

    def __init__(
        self,
        engine: ApprovalEngine,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
        batch_size: int | None = None,
    ):
        self._engine = engine
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._batch_size = batch_size
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepResult:
        """Run one sweep (public for testing and ``--once``)."""
        now = self._clock.now()
        session = self._session_factory()
        try:
            due = InstanceSelector(session).due_for_auto_advance(now, self._batch_size)
        except Exception:
            logger.exception("timeout_sweep_scan_failed")
            return SweepResult()
        finally:
            session.close()

        advanced = skipped = failed = 0
        for instance_id, step_index in due:
            if self._stop_event.is_set():
                break
            try:
                self._engine.auto_advance(instance_id, expected_step_index=step_index)
                advanced += 1
            except _BENIGN_ERRORS as exc:
                skipped += 1
                logger.info(
                    "timeout_sweep_item_skipped",
                    extra={
                        "instance_id": str(instance_id),
                        "step_index": step_index,
                        "reason": exc.code,
                    },
                )
            except Exception:
                failed += 1
                logger.exception(
                    "timeout_sweep_item_failed",
                    extra={"instance_id": str(instance_id), "step_index": step_index},
                )

        result = SweepResult(
            scanned=len(due),
            advanced=advanced,
            skipped=skipped,
            failed=failed,
        )
        logger.info(
            "timeout_sweep_completed",
            extra={
                "scanned": result.scanned,
                "advanced": result.advanced,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="timeout-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("timeout_scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("timeout_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("timeout_scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

"""
Tests for TimeoutScheduler -- sweeping overdue steps.

Rules are created through ``make_rule`` and instances through the
ApprovalEngine, so every tick sees committed data exactly as a separate
scheduler process would.
"""

import time

from workflow_batch import SweepResult, TimeoutScheduler
from workflow_kernel.domain.approver import DirectManager, HrAdmin
from workflow_kernel.domain.instance import (
    AUTO_APPROVE_REASON,
    InstanceStatus,
    StepDecision,
)
from workflow_kernel.domain.rules import StepTemplate
from workflow_kernel.exceptions import StepAlreadyResolvedError


def _scheduler(approval_engine, session_factory, clock, **kwargs):
    return TimeoutScheduler(approval_engine, session_factory, clock, **kwargs)


class TestTick:
    def test_overdue_step_auto_approved(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock, recorded_events,
    ):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager(), auto_approve_after_hours=2)])
        instance = approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))

        clock.advance(hours=2)
        result = _scheduler(approval_engine, session_factory, clock).tick()

        assert result == SweepResult(scanned=1, advanced=1)
        done = approval_engine.get_instance(instance.instance_id)
        assert done.status == InstanceStatus.APPROVED
        (outcome,) = done.outcomes
        assert outcome.decision == StepDecision.AUTO_APPROVED
        assert outcome.actor_id is None
        assert outcome.comment == AUTO_APPROVE_REASON
        assert [e.new_status for e in recorded_events] == [InstanceStatus.APPROVED]

    def test_not_yet_due(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock,
    ):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager(), auto_approve_after_hours=2)])
        instance = approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))

        clock.advance(hours=1, seconds=3599)
        result = _scheduler(approval_engine, session_factory, clock).tick()

        assert result.scanned == 0
        assert approval_engine.get_instance(instance.instance_id).status == InstanceStatus.PENDING

    def test_each_step_advanced_once(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock, recorded_events,
    ):
        make_rule("LEAVE_APPROVAL", [
            StepTemplate(1, DirectManager(), auto_approve_after_hours=2),
            StepTemplate(2, HrAdmin(), auto_approve_after_hours=4),
        ])
        instance = approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))
        scheduler = _scheduler(approval_engine, session_factory, clock)

        clock.advance(hours=2)
        assert scheduler.tick().advanced == 1
        assert scheduler.tick().scanned == 0

        moved = approval_engine.get_instance(instance.instance_id)
        assert moved.current_step_index == 1
        assert moved.current_approver_id == org.hr_admin

        clock.advance(hours=4)
        assert scheduler.tick().advanced == 1
        assert approval_engine.get_instance(instance.instance_id).status == InstanceStatus.APPROVED
        assert [e.step_index for e in recorded_events] == [0, 1]

    def test_human_decision_removes_from_sweep(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock,
    ):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager(), auto_approve_after_hours=2)])
        instance = approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))
        approval_engine.reject(instance.instance_id, org.manager, 0, "no cover")

        clock.advance(hours=3)
        assert _scheduler(approval_engine, session_factory, clock).tick().scanned == 0

    def test_steps_without_timeout_ignored(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock,
    ):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager())])
        approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))

        clock.advance(hours=24 * 365)
        assert _scheduler(approval_engine, session_factory, clock).tick().scanned == 0

    def test_batch_size_limits_scan(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock,
    ):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager(), auto_approve_after_hours=1)])
        for _ in range(3):
            approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))

        clock.advance(hours=1)
        scheduler = _scheduler(approval_engine, session_factory, clock, batch_size=2)
        assert scheduler.tick().advanced == 2
        assert scheduler.tick().advanced == 1
        assert scheduler.tick().scanned == 0

    def test_sweep_logged(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock, captured_logs,
    ):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager(), auto_approve_after_hours=1)])
        approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice))
        clock.advance(hours=1)

        _scheduler(approval_engine, session_factory, clock).tick()

        (record,) = [r for r in captured_logs() if r["message"] == "timeout_sweep_completed"]
        assert record["advanced"] == 1
        assert record["failed"] == 0


class _ScriptedEngine:
    """Stands in for ApprovalEngine; raises the scripted error per instance."""

    def __init__(self, errors):
        self.errors = errors
        self.calls = []

    def auto_advance(self, instance_id, expected_step_index=None):
        self.calls.append((instance_id, expected_step_index))
        error = self.errors.get(instance_id)
        if error is not None:
            raise error


class TestItemFailures:
    def _due(self, approval_engine, make_rule, org, context, subject_factory, clock, count):
        make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager(), auto_approve_after_hours=1)])
        ids = [
            approval_engine.start_approval("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance_id
            for _ in range(count)
        ]
        clock.advance(hours=1)
        return ids

    def test_lost_race_counted_as_skipped(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock,
    ):
        first, second = self._due(approval_engine, make_rule, org, context, subject_factory, clock, 2)
        engine = _ScriptedEngine({first: StepAlreadyResolvedError(str(first), 0)})

        result = TimeoutScheduler(engine, session_factory, clock).tick()

        assert result == SweepResult(scanned=2, advanced=1, skipped=1)
        assert sorted(engine.calls) == sorted([(first, 0), (second, 0)])

    def test_unexpected_error_counted_and_sweep_continues(
        self, approval_engine, session_factory, make_rule, org, context, subject_factory, clock, captured_logs,
    ):
        first, second = self._due(approval_engine, make_rule, org, context, subject_factory, clock, 2)
        engine = _ScriptedEngine({second: RuntimeError("directory offline")})

        result = TimeoutScheduler(engine, session_factory, clock).tick()

        assert result == SweepResult(scanned=2, advanced=1, failed=1)
        failed = [r for r in captured_logs() if r["message"] == "timeout_sweep_item_failed"]
        assert failed[0]["instance_id"] == str(second)


class TestLifecycle:
    def test_start_and_stop(self, approval_engine, session_factory, clock):
        scheduler = _scheduler(approval_engine, session_factory, clock, tick_interval_seconds=0.01)
        scheduler.start()
        try:
            assert scheduler.is_running
            time.sleep(0.05)
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_start_twice_keeps_one_thread(self, approval_engine, session_factory, clock):
        scheduler = _scheduler(approval_engine, session_factory, clock, tick_interval_seconds=0.01)
        scheduler.start()
        thread = scheduler._thread
        scheduler.start()
        try:
            assert scheduler._thread is thread
        finally:
            scheduler.stop(timeout=5)


def test_sweep_result_defaults():
    assert SweepResult() == SweepResult(scanned=0, advanced=0, skipped=0, failed=0)

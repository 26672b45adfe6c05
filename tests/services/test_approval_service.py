"""
Tests for ApprovalService -- approval instance lifecycle in one session.

Covers instance start (rule selection, chain materialisation, duplicate
guard), decisions, cancellation, persisted events and the instance audit
trail.  Transaction and delivery behaviour of the public facade is
covered in tests/integration.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from workflow_kernel.domain.approver import (
    DirectManager,
    HrAdmin,
    SpecificEmployee,
    SpecificRole,
)
from workflow_kernel.domain.instance import InstanceStatus, StepDecision
from workflow_kernel.domain.rules import RuleConditions, StepTemplate
from workflow_kernel.exceptions import (
    AlreadyFinalizedError,
    ApprovalInstanceNotFoundError,
    DuplicateApprovalInstanceError,
    NoApplicableRuleError,
    NotCurrentApproverError,
    NotSubjectOwnerError,
    UnresolvableApproverError,
)
from workflow_kernel.models.approval_instance import ApprovalInstanceModel
from workflow_kernel.models.audit_event import AuditAction
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.services.approval_service import status_view
from workflow_kernel.services.auditor_service import INSTANCE_ENTITY


@pytest.fixture
def leave_rule(rule_admin, org):
    return rule_admin.create_rule(
        company_id=org.company_id,
        workflow_type="LEAVE_APPROVAL",
        name="Leave",
        steps=[StepTemplate(1, DirectManager()), StepTemplate(2, HrAdmin(), 48)],
        actor_id=org.hr_admin,
    )


class TestStart:
    def test_creates_pending_instance(self, approval_service, leave_rule, org, context, subject_factory, clock):
        subject = subject_factory()
        result = approval_service.start("LEAVE_APPROVAL", subject, context(org.alice))
        instance = result.instance

        assert instance.status == InstanceStatus.PENDING
        assert instance.subject == subject
        assert instance.requester_id == org.alice
        assert instance.rule_id == leave_rule.rule_id
        assert instance.rule_version == 1
        assert instance.rule_name == "Leave"
        assert instance.current_step_index == 0
        assert instance.current_approver_id == org.manager
        assert instance.step_entered_at == clock.now()
        assert instance.step_deadline_at is None
        assert len(instance.chain) == 2
        assert instance.chain[1].approver_id == org.hr_admin
        assert result.events == ()

    def test_department_filled_from_directory(self, approval_service, rule_admin, org, context, subject_factory):
        rule_admin.create_rule(
            company_id=org.company_id,
            workflow_type="GOAL_APPROVAL",
            name="Engineering goals",
            steps=[StepTemplate(1, SpecificRole("EXECUTIVE"))],
            actor_id=org.hr_admin,
            conditions=RuleConditions(department_ids=frozenset({org.engineering})),
        )
        instance = approval_service.start(
            "GOAL_APPROVAL", subject_factory("Goal"), context(org.alice),
        ).instance
        assert instance.current_approver_id == org.executive

    def test_amount_routes_to_specific_rule(self, approval_service, rule_admin, org, context, subject_factory):
        for name, conditions, approver in (
            ("Small payroll", RuleConditions(max_amount=Decimal("10000")), HrAdmin()),
            ("Large payroll", RuleConditions(min_amount=Decimal("10000")), SpecificRole("EXECUTIVE")),
        ):
            rule_admin.create_rule(
                company_id=org.company_id,
                workflow_type="PAYROLL_APPROVAL",
                name=name,
                steps=[StepTemplate(1, approver)],
                actor_id=org.hr_admin,
                conditions=conditions,
            )
        small = approval_service.start(
            "PAYROLL_APPROVAL", subject_factory("Payroll"), context(org.bob, amount=Decimal("9999")),
        ).instance
        large = approval_service.start(
            "PAYROLL_APPROVAL", subject_factory("Payroll"), context(org.bob, amount=Decimal("10000")),
        ).instance
        assert small.rule_name == "Small payroll"
        assert small.current_approver_id == org.hr_admin
        assert large.rule_name == "Large payroll"
        assert large.current_approver_id == org.executive

    def test_duplicate_pending_subject(self, approval_service, leave_rule, org, context, subject_factory):
        subject = subject_factory()
        first = approval_service.start("LEAVE_APPROVAL", subject, context(org.alice)).instance
        with pytest.raises(DuplicateApprovalInstanceError) as exc_info:
            approval_service.start("LEAVE_APPROVAL", subject, context(org.alice))
        assert exc_info.value.existing_id == str(first.instance_id)

    def test_restart_after_terminal(self, approval_service, leave_rule, org, context, subject_factory):
        subject = subject_factory()
        first = approval_service.start("LEAVE_APPROVAL", subject, context(org.alice)).instance
        approval_service.reject(first.instance_id, org.manager, 0, "dates clash")
        second = approval_service.start("LEAVE_APPROVAL", subject, context(org.alice)).instance
        assert second.instance_id != first.instance_id
        assert second.status == InstanceStatus.PENDING

    def test_no_rule(self, approval_service, org, context, subject_factory, session):
        with pytest.raises(NoApplicableRuleError):
            approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice))
        assert session.query(ApprovalInstanceModel).count() == 0

    def test_unresolvable_approver_writes_nothing(self, approval_service, leave_rule, org, context, subject_factory, session):
        with pytest.raises(UnresolvableApproverError):
            approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.orphan))
        assert session.query(ApprovalInstanceModel).count() == 0

    def test_inactive_specific_employee(self, approval_service, rule_admin, org, context, subject_factory):
        rule_admin.create_rule(
            company_id=org.company_id,
            workflow_type="PROFILE_CHANGE",
            name="Profile",
            steps=[StepTemplate(1, SpecificEmployee(org.hr_admin_2))],
            actor_id=org.hr_admin,
        )
        org.directory.deactivate(org.hr_admin_2)
        with pytest.raises(UnresolvableApproverError):
            approval_service.start("PROFILE_CHANGE", subject_factory("Profile"), context(org.alice))

    def test_audited(self, approval_service, auditor_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        trace = auditor_service.get_trace(INSTANCE_ENTITY, instance.instance_id)
        assert trace.actions == (AuditAction.APPROVAL_STARTED,)
        assert trace.entries[0].payload["chain_length"] == 2
        assert trace.entries[0].actor_id == org.alice

    def test_rule_edit_does_not_touch_existing_chain(self, approval_service, rule_admin, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        rule_admin.update_rule(
            leave_rule.rule_id, org.company_id, org.hr_admin,
            steps=[StepTemplate(1, SpecificRole("EXECUTIVE"))],
        )
        reloaded = approval_service.get_instance(instance.instance_id)
        assert reloaded.rule_version == 1
        assert len(reloaded.chain) == 2
        assert reloaded.current_approver_id == org.manager


class TestDecisions:
    def test_full_approval(self, approval_service, leave_rule, org, context, subject_factory, clock):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance

        clock.advance(hours=1)
        first = approval_service.approve(instance.instance_id, org.manager, 0, "enjoy")
        assert first.instance.current_step_index == 1
        assert first.instance.current_approver_id == org.hr_admin
        assert first.instance.step_deadline_at == clock.now() + timedelta(hours=48)
        assert [e.new_status for e in first.events] == [InstanceStatus.PENDING]

        second = approval_service.approve(instance.instance_id, org.hr_admin, 1)
        done = second.instance
        assert done.status == InstanceStatus.APPROVED
        assert done.current_approver_id is None
        assert done.resolved_at == clock.now()
        assert [o.decision for o in done.outcomes] == [StepDecision.APPROVED, StepDecision.APPROVED]
        assert done.outcomes[0].comment == "enjoy"
        assert second.events[0].is_final

    def test_reject(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        result = approval_service.reject(instance.instance_id, org.manager, 0, "team offsite")
        assert result.instance.status == InstanceStatus.REJECTED
        assert result.instance.current_step_index == 0
        assert result.instance.resolution_comment == "team offsite"
        assert result.instance.resolved_by_id == org.manager

    def test_request_revision(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        result = approval_service.request_revision(instance.instance_id, org.manager, 0, "fix dates")
        assert result.instance.status == InstanceStatus.REJECTED
        assert result.instance.outcomes[0].decision == StepDecision.REVISION_REQUESTED

    def test_wrong_approver(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        with pytest.raises(NotCurrentApproverError):
            approval_service.approve(instance.instance_id, org.hr_admin, 0)

    def test_override(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        result = approval_service.approve(instance.instance_id, org.executive, 0, override=True)
        assert result.instance.outcomes[0].override
        assert result.instance.outcomes[0].actor_id == org.executive

    def test_decision_after_terminal(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        approval_service.reject(instance.instance_id, org.manager, 0)
        with pytest.raises(AlreadyFinalizedError):
            approval_service.approve(instance.instance_id, org.manager, 0)

    def test_unknown_instance(self, approval_service, org):
        with pytest.raises(ApprovalInstanceNotFoundError):
            approval_service.approve(uuid4(), org.manager, 0)


class TestCancel:
    def test_owner_cancels(self, approval_service, auditor_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        result = approval_service.cancel(instance.instance_id, org.alice, "not needed")

        assert result.instance.status == InstanceStatus.CANCELLED
        assert result.instance.outcomes == ()
        (event,) = result.events
        assert event.new_status == InstanceStatus.CANCELLED
        assert event.actor_id == org.alice
        trace = auditor_service.get_trace(INSTANCE_ENTITY, instance.instance_id)
        assert trace.actions[-1] == AuditAction.APPROVAL_CANCELLED

    def test_non_owner(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        with pytest.raises(NotSubjectOwnerError):
            approval_service.cancel(instance.instance_id, org.manager)


class TestPersistence:
    def test_events_persisted_in_sequence(self, approval_service, session, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        approval_service.approve(instance.instance_id, org.manager, 0)
        approval_service.approve(instance.instance_id, org.hr_admin, 1)

        events = InstanceSelector(session).events_for(instance.instance_id)
        assert [e.sequence for e in events] == [1, 2]
        assert [e.step_index for e in events] == [0, 1]
        assert events[-1].new_status == InstanceStatus.APPROVED
        assert events[0].step_outcome.actor_id == org.manager

    def test_audit_chain_intact(self, approval_service, auditor_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        approval_service.approve(instance.instance_id, org.manager, 0)
        approval_service.reject(instance.instance_id, org.hr_admin, 1)
        trace = auditor_service.get_trace(INSTANCE_ENTITY, instance.instance_id)
        assert trace.actions == (
            AuditAction.APPROVAL_STARTED,
            AuditAction.APPROVAL_STEP_RECORDED,
            AuditAction.APPROVAL_STEP_RECORDED,
        )
        assert auditor_service.validate_chain(INSTANCE_ENTITY, instance.instance_id)

    def test_status_view(self, approval_service, leave_rule, org, context, subject_factory):
        instance = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        instance = approval_service.approve(instance.instance_id, org.manager, 0).instance
        view = status_view(instance)
        assert view.overall_status == InstanceStatus.PENDING
        assert view.current_step_index == 1
        assert view.total_steps == 2
        assert view.current_approver_id == org.hr_admin
        assert len(view.history) == 1

    def test_approver_inbox(self, approval_service, session, leave_rule, org, context, subject_factory):
        a = approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.alice)).instance
        approval_service.start("LEAVE_APPROVAL", subject_factory(), context(org.bob))
        inbox = InstanceSelector(session).pending_for_approver(org.manager)
        assert [i.instance_id for i in inbox] == [a.instance_id]

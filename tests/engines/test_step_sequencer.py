"""
Tests for chain materialisation (``workflow_engines.step_sequencer``).

A rule becomes a frozen chain for one subject: one resolved step per
template in order, skippable unresolved steps marked pre-skipped, and an
unresolvable required step aborting the whole start.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from workflow_engines.step_sequencer import materialize_chain
from workflow_kernel.domain.approver import (
    ApproverKind,
    DepartmentHead,
    DirectManager,
    HrAdmin,
    SpecificEmployee,
    SpecificRole,
)
from workflow_kernel.domain.rules import StepTemplate, WorkflowRule
from workflow_kernel.exceptions import UnresolvableApproverError


def _rule(org, *steps) -> WorkflowRule:
    return WorkflowRule(
        rule_id=uuid4(),
        company_id=org.company_id,
        workflow_type="LEAVE_APPROVAL",
        name="Leave",
        steps=tuple(steps),
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class TestMaterializeChain:
    def test_chain_follows_step_order(self, org, context):
        rule = _rule(
            org,
            StepTemplate(2, HrAdmin(), auto_approve_after_hours=48),
            StepTemplate(1, DirectManager()),
        )
        chain = materialize_chain(rule, context(org.alice), org.directory)

        assert [s.step_index for s in chain] == [0, 1]
        assert [s.step_order for s in chain] == [1, 2]
        assert chain[0].approver_id == org.manager
        assert chain[0].approver_name == "Mia"
        assert chain[1].approver_id == org.hr_admin
        assert chain[1].auto_approve_after_hours == 48

    def test_references_copied(self, org, context):
        rule = _rule(
            org,
            StepTemplate(1, SpecificRole("EXECUTIVE")),
            StepTemplate(2, SpecificEmployee(org.hr_admin_2)),
        )
        chain = materialize_chain(rule, context(org.alice), org.directory)
        assert chain[0].approver_kind == ApproverKind.SPECIFIC_ROLE
        assert chain[0].role_code == "EXECUTIVE"
        assert chain[1].employee_ref == org.hr_admin_2
        assert chain[1].approver_id == org.hr_admin_2

    def test_skippable_unresolved_step_is_pre_skipped(self, org, context):
        rule = _rule(
            org,
            StepTemplate(1, DirectManager(), can_skip=True),
            StepTemplate(2, HrAdmin()),
        )
        chain = materialize_chain(rule, context(org.orphan), org.directory)
        assert chain[0].pre_skipped
        assert chain[0].approver_id is None
        assert not chain[0].is_resolved
        assert not chain[1].pre_skipped

    def test_required_unresolved_step_aborts(self, org, context):
        rule = _rule(org, StepTemplate(1, HrAdmin()), StepTemplate(2, DirectManager()))
        with pytest.raises(UnresolvableApproverError) as exc_info:
            materialize_chain(rule, context(org.orphan), org.directory)
        assert exc_info.value.step_order == 2
        assert exc_info.value.approver_kind == "DIRECT_MANAGER"

    def test_inactive_specific_employee_aborts(self, org, context):
        org.directory.deactivate(org.executive)
        rule = _rule(org, StepTemplate(1, SpecificEmployee(org.executive)))
        with pytest.raises(UnresolvableApproverError):
            materialize_chain(rule, context(org.alice), org.directory)

    def test_department_from_context(self, org, context):
        rule = _rule(org, StepTemplate(1, DepartmentHead()))
        chain = materialize_chain(
            rule, context(org.bob, department_id=org.engineering), org.directory,
        )
        assert chain[0].approver_id == org.dept_head

    def test_chain_is_a_snapshot(self, org, context):
        rule = _rule(org, StepTemplate(1, DirectManager()))
        chain = materialize_chain(rule, context(org.alice), org.directory)
        org.directory.deactivate(org.manager)
        assert chain[0].approver_id == org.manager

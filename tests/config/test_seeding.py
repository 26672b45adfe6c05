"""
Tests for workflow_config.seeding -- idempotent installation of rule sets.
"""

from uuid import uuid4

import pytest

from workflow_config import load_rule_set, parse_rule_set, seed_rules
from workflow_kernel.domain.approver import SpecificRole
from workflow_kernel.exceptions import InvalidRuleError
from workflow_kernel.models.audit_event import AuditAction
from workflow_kernel.selectors.rule_selector import RuleSelector
from workflow_kernel.services.auditor_service import RULE_ENTITY


def _single_rule_set(hours=None, role="HR_ADMIN"):
    step = {"step_order": 1, "approver_type": "SPECIFIC_ROLE", "role_code": role}
    if hours is not None:
        step["auto_approve_after_hours"] = hours
    return parse_rule_set({
        "name": "profile",
        "rules": [{"workflow_type": "PROFILE_CHANGE", "name": "Profile", "steps": [step]}],
    })


def test_seed_defaults(session, org, clock):
    report = seed_rules(session, load_rule_set(), org.company_id, org.hr_admin, clock)

    assert len(report.created) == 4
    assert report.total == 4
    payroll = RuleSelector(session).find_by_name(org.company_id, "PAYROLL_APPROVAL", "Payroll approval")
    assert payroll.total_steps == 2
    assert payroll.steps[1].approver == SpecificRole("EXECUTIVE")


def test_reseeding_is_a_noop(session, org, clock):
    rule_set = load_rule_set()
    seed_rules(session, rule_set, org.company_id, org.hr_admin, clock)

    report = seed_rules(session, rule_set, org.company_id, org.hr_admin, clock)

    assert report.created == []
    assert report.updated == []
    assert len(report.unchanged) == 4


def test_changed_rule_updated_in_place(session, org, clock, auditor_service):
    seed_rules(session, _single_rule_set(), org.company_id, org.hr_admin, clock)
    report = seed_rules(session, _single_rule_set(hours=72), org.company_id, org.hr_admin, clock)

    assert report.updated == ["PROFILE_CHANGE/Profile"]
    rule = RuleSelector(session).find_by_name(org.company_id, "PROFILE_CHANGE", "Profile")
    assert rule.version == 2
    assert rule.steps[0].auto_approve_after_hours == 72
    assert auditor_service.get_trace(RULE_ENTITY, rule.rule_id).actions == (
        AuditAction.RULE_CREATED, AuditAction.RULE_UPDATED,
    )


def test_companies_seeded_independently(session, org, clock):
    seed_rules(session, _single_rule_set(), org.company_id, org.hr_admin, clock)
    report = seed_rules(session, _single_rule_set(), uuid4(), org.hr_admin, clock)
    assert report.created == ["PROFILE_CHANGE/Profile"]


def test_invalid_set_writes_nothing(session, org, clock):
    rule_set = parse_rule_set({
        "name": "broken",
        "rules": [
            {"workflow_type": "LEAVE_APPROVAL", "name": "A",
             "steps": [{"step_order": 1, "approver_type": "DIRECT_MANAGER"}]},
            {"workflow_type": "LEAVE_APPROVAL", "name": "B",
             "steps": [{"step_order": 1, "approver_type": "DIRECT_MANAGER"}]},
        ],
    })
    with pytest.raises(InvalidRuleError):
        seed_rules(session, rule_set, org.company_id, org.hr_admin, clock)
    assert RuleSelector(session).candidates(org.company_id, "LEAVE_APPROVAL") == []


def test_seeding_logged(session, org, clock, captured_logs):
    seed_rules(session, load_rule_set(), org.company_id, org.hr_admin, clock)
    (record,) = [r for r in captured_logs() if r["message"] == "workflow_rules_seeded"]
    assert record["rules_created"] == 4
    assert record["rules_unchanged"] == 0
    assert record["rule_set"] == "default"

"""
Tests for workflow_config.validator -- whole-file rule set checks.
"""

from workflow_config import parse_rule_set, validate_rule_set


def _rule(name="Leave", workflow_type="LEAVE_APPROVAL", steps=None, **extra):
    data = {
        "workflow_type": workflow_type,
        "name": name,
        "steps": steps or [{"step_order": 1, "approver_type": "DIRECT_MANAGER"}],
    }
    data.update(extra)
    return data


def _validate(*rules):
    return validate_rule_set(parse_rule_set({"name": "test", "rules": list(rules)}))


def test_default_shaped_set_is_valid():
    result = _validate(
        _rule(),
        _rule("Profile", "PROFILE_CHANGE", [
            {"step_order": 1, "approver_type": "SPECIFIC_ROLE", "role_code": "HR_ADMIN"},
        ]),
    )
    assert result.is_valid
    assert result.warnings == []


def test_empty_set_warns():
    result = _validate()
    assert result.is_valid
    assert "defines no rules" in result.warnings[0]


def test_duplicate_name():
    result = _validate(_rule(), _rule(conditions={"min_amount": 5}))
    assert not result.is_valid
    assert any("Duplicate rule" in e for e in result.errors)


def test_identical_active_conditions_are_ambiguous():
    result = _validate(_rule("Leave A"), _rule("Leave B"))
    assert any("Ambiguous rules for LEAVE_APPROVAL" in e for e in result.errors)


def test_inactive_twin_is_not_ambiguous():
    result = _validate(_rule("Leave A"), _rule("Leave B", is_active=False))
    assert result.is_valid
    assert any("inactive" in w for w in result.warnings)


def test_different_conditions_are_not_ambiguous():
    result = _validate(
        _rule("Small", "PAYROLL_APPROVAL", conditions={"max_amount": 10000}),
        _rule("Large", "PAYROLL_APPROVAL", conditions={"min_amount": 10000}),
    )
    assert result.is_valid


def test_bad_approver_pairing():
    result = _validate(_rule(steps=[
        {"step_order": 1, "approver_type": "DIRECT_MANAGER", "role_code": "HR_ADMIN"},
    ]))
    assert any("must not carry" in e for e in result.errors)


def test_unknown_approver_type():
    result = _validate(_rule(steps=[{"step_order": 1, "approver_type": "TEAM_LEAD"}]))
    assert any("Unknown approver type" in e for e in result.errors)


def test_gap_in_step_order():
    result = _validate(_rule(steps=[
        {"step_order": 1, "approver_type": "DIRECT_MANAGER"},
        {"step_order": 3, "approver_type": "HR_ADMIN"},
    ]))
    assert any("contiguous" in e for e in result.errors)


def test_negative_timeout():
    result = _validate(_rule(steps=[
        {"step_order": 1, "approver_type": "DIRECT_MANAGER", "auto_approve_after_hours": -1},
    ]))
    assert not result.is_valid


def test_zero_hour_timeout_rejected():
    result = _validate(_rule(steps=[
        {"step_order": 1, "approver_type": "DIRECT_MANAGER", "auto_approve_after_hours": 0},
    ]))
    assert not result.is_valid
    assert any("positive number of hours" in e for e in result.errors)


def test_invalid_condition_uuid():
    result = _validate(_rule(conditions={"department_ids": ["engineering"]}))
    assert any("invalid condition reference" in e for e in result.errors)


def test_inverted_amount_range():
    result = _validate(_rule(
        "Payroll", "PAYROLL_APPROVAL", conditions={"min_amount": 500, "max_amount": 100},
    ))
    assert any("must be below max_amount" in e for e in result.errors)


def test_empty_name():
    result = _validate(_rule(name="  "))
    assert any("empty name" in e for e in result.errors)

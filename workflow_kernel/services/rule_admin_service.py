"""
RuleAdminService -- administrative CRUD for workflow rules.

Responsibility:
    Create, edit, soft-delete, look up and list the workflow rules of a
    company, validating every save so that no invalid or ambiguous rule
    ever reaches the rule selector.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - Step templates: at least one, order contiguous from 1, valid
      approver pairing, non-negative timeout.
    - Conditions: ``min_amount < max_amount``.
    - No two active rules of a company share workflow type and conditions.
    - Every edit increments ``version``; instances already materialised
      keep their own chain snapshot and are never affected.

Failure modes:
    - InvalidRuleError / InvalidStepTemplateError on validation failure.
    - AmbiguousRuleError on a duplicate active rule.
    - RuleNotFoundError for unknown or deleted rules (and for rules of
      another company).
    - RuleEditConflictError when a concurrent edit saved first.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow_kernel.domain.approver import ApproverKind
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.rules import (
    RuleConditions,
    RulePage,
    StepTemplate,
    WorkflowRule,
    ordered_steps,
    validate_conditions,
    validate_step_templates,
)
from workflow_kernel.exceptions import (
    AmbiguousRuleError,
    InvalidRuleError,
    RuleEditConflictError,
    RuleNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow_rule import StepTemplateModel, WorkflowRuleModel
from workflow_kernel.selectors.rule_selector import RuleSelector
from workflow_kernel.services.auditor_service import AuditorService

logger = get_logger("services.rule_admin")


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Distinguishes "leave conditions alone" from "clear conditions" (None).
UNSET = _Unset()


def _rule_payload(rule: WorkflowRule) -> dict:
    return {
        "workflow_type": rule.workflow_type,
        "name": rule.name,
        "is_active": rule.is_active,
        "version": rule.version,
        "conditions": rule.conditions.to_dict(),
        "steps": [
            {
                "step_order": s.step_order,
                "approver_kind": s.approver_kind.value,
                "auto_approve_after_hours": s.auto_approve_after_hours,
                "can_skip": s.can_skip,
            }
            for s in rule.steps
        ],
    }


class RuleAdminService:
    """Administrative surface for workflow rules.

    Flushes but never commits; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._selector = RuleSelector(session)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(
        self,
        name: str,
        workflow_type: str,
        steps: Sequence[StepTemplate],
        conditions: RuleConditions,
    ) -> None:
        if not name or not name.strip():
            raise InvalidRuleError(name or "", "name is required")
        if not workflow_type or not workflow_type.strip():
            raise InvalidRuleError(name, "workflow_type is required")
        validate_step_templates(steps)
        validate_conditions(name, conditions)

    def _ensure_unambiguous(
        self,
        company_id: UUID,
        workflow_type: str,
        conditions: RuleConditions,
        exclude_rule_id: UUID | None = None,
    ) -> None:
        for other in self._selector.candidates(company_id, workflow_type):
            if other.rule_id != exclude_rule_id and other.conditions == conditions:
                raise AmbiguousRuleError(workflow_type, str(other.rule_id))

    def _load(self, rule_id: UUID, company_id: UUID) -> WorkflowRuleModel:
        model = self._selector.get_model(rule_id, company_id)
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    def _flush_edit(self, model: WorkflowRuleModel, expected_version: int) -> None:
        try:
            self._session.flush()
        except StaleDataError:
            raise RuleEditConflictError(str(model.id), expected_version) from None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_rule(
        self,
        company_id: UUID,
        workflow_type: str,
        name: str,
        steps: Sequence[StepTemplate],
        actor_id: UUID,
        conditions: RuleConditions | None = None,
        is_active: bool = True,
    ) -> WorkflowRule:
        """Create and persist a new rule (version 1)."""
        conditions = conditions or RuleConditions()
        self._validate(name, workflow_type, steps, conditions)
        if is_active:
            self._ensure_unambiguous(company_id, workflow_type, conditions)

        now = self._clock.now()
        model = WorkflowRuleModel(
            company_id=company_id,
            workflow_type=workflow_type,
            name=name.strip(),
            is_active=is_active,
            conditions=None if conditions.is_unconditional else conditions.to_dict(),
            version=1,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
            steps=[StepTemplateModel.from_dto(s) for s in ordered_steps(steps)],
        )
        self._session.add(model)
        self._session.flush()

        rule = model.to_dto()
        self._auditor.record_rule_created(rule.rule_id, actor_id, _rule_payload(rule))
        logger.info(
            "workflow_rule_created",
            extra={
                "rule_id": str(rule.rule_id),
                "company_id": str(company_id),
                "workflow_type": workflow_type,
                "total_steps": rule.total_steps,
            },
        )
        return rule

    def update_rule(
        self,
        rule_id: UUID,
        company_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        is_active: bool | None = None,
        conditions: RuleConditions | None | _Unset = UNSET,
        steps: Sequence[StepTemplate] | None = None,
    ) -> WorkflowRule:
        """Edit a rule. ``steps`` replaces the whole chain when given.

        Every call increments the rule's version, even when nothing but
        the chain changes.
        """
        model = self._load(rule_id, company_id)
        current = model.to_dto()

        new_name = name if name is not None else current.name
        new_active = is_active if is_active is not None else current.is_active
        if isinstance(conditions, _Unset):
            new_conditions = current.conditions
        else:
            new_conditions = conditions or RuleConditions()
        new_steps = tuple(steps) if steps is not None else current.steps

        self._validate(new_name, current.workflow_type, new_steps, new_conditions)
        if new_active:
            self._ensure_unambiguous(
                company_id, current.workflow_type, new_conditions, exclude_rule_id=rule_id,
            )

        expected_version = model.version
        if steps is not None:
            # Old rows go first so the (rule_id, step_order) constraint holds
            model.steps.clear()
            self._flush_edit(model, expected_version)
            model.steps.extend(StepTemplateModel.from_dto(s) for s in ordered_steps(new_steps))

        model.name = new_name.strip()
        model.is_active = new_active
        model.conditions = None if new_conditions.is_unconditional else new_conditions.to_dict()
        model.version = expected_version + 1
        model.updated_at = self._clock.now()
        model.updated_by_id = actor_id
        self._flush_edit(model, expected_version)

        rule = model.to_dto()
        self._auditor.record_rule_updated(rule.rule_id, actor_id, _rule_payload(rule))
        logger.info(
            "workflow_rule_updated",
            extra={
                "rule_id": str(rule_id),
                "version": rule.version,
                "steps_replaced": steps is not None,
            },
        )
        return rule

    def delete_rule(self, rule_id: UUID, company_id: UUID, actor_id: UUID) -> None:
        """Soft-delete: the rule disappears from selection and listings."""
        model = self._load(rule_id, company_id)
        expected_version = model.version
        now = self._clock.now()
        model.deleted_at = now
        model.is_active = False
        model.version = expected_version + 1
        model.updated_at = now
        model.updated_by_id = actor_id
        self._flush_edit(model, expected_version)

        self._auditor.record_rule_deleted(rule_id, actor_id, model.version)
        logger.info("workflow_rule_deleted", extra={"rule_id": str(rule_id)})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_rule(self, rule_id: UUID, company_id: UUID) -> WorkflowRule:
        rule = self._selector.get(rule_id, company_id)
        if rule is None:
            raise RuleNotFoundError(str(rule_id))
        return rule

    def list_rules(
        self,
        company_id: UUID,
        page: int = 1,
        limit: int = 20,
        workflow_type: str | None = None,
    ) -> RulePage:
        return self._selector.list_page(company_id, page, limit, workflow_type)

    def steps_summary(self, rule_id: UUID, company_id: UUID) -> tuple[tuple[int, ApproverKind], ...]:
        """(step_order, approver kind) per step, for listings."""
        rule = self.get_rule(rule_id, company_id)
        return tuple((s.step_order, s.approver_kind) for s in rule.steps)

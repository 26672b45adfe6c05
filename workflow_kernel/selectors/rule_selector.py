"""
Module: workflow_kernel.selectors.rule_selector
Responsibility: Read access to workflow rules -- selection candidates,
    single-rule lookup and paginated administrative listings.
Architecture position: Kernel > Selectors.  Ranking of candidates lives in
    the pure ``workflow_engines.rule_selector``.
"""

from uuid import UUID

from sqlalchemy import func, select

from workflow_kernel.domain.rules import RulePage, WorkflowRule
from workflow_kernel.models.workflow_rule import WorkflowRuleModel
from workflow_kernel.selectors.base import BaseSelector

MAX_PAGE_LIMIT = 100


class RuleSelector(BaseSelector[WorkflowRuleModel]):
    """Selector for workflow rules."""

    def candidates(self, company_id: UUID, workflow_type: str) -> list[WorkflowRule]:
        """Active, non-deleted rules of one type in one company."""
        rows = self.session.execute(
            select(WorkflowRuleModel).where(
                WorkflowRuleModel.company_id == company_id,
                WorkflowRuleModel.workflow_type == workflow_type,
                WorkflowRuleModel.is_active.is_(True),
                WorkflowRuleModel.deleted_at.is_(None),
            )
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def get(
        self,
        rule_id: UUID,
        company_id: UUID,
        include_deleted: bool = False,
    ) -> WorkflowRule | None:
        model = self.get_model(rule_id, company_id, include_deleted)
        return model.to_dto() if model is not None else None

    def get_model(
        self,
        rule_id: UUID,
        company_id: UUID,
        include_deleted: bool = False,
    ) -> WorkflowRuleModel | None:
        """ORM lookup for the admin service, which needs to mutate the row."""
        stmt = select(WorkflowRuleModel).where(
            WorkflowRuleModel.id == rule_id,
            WorkflowRuleModel.company_id == company_id,
        )
        if not include_deleted:
            stmt = stmt.where(WorkflowRuleModel.deleted_at.is_(None))
        return self.session.execute(stmt).scalar_one_or_none()

    def list_page(
        self,
        company_id: UUID,
        page: int = 1,
        limit: int = 20,
        workflow_type: str | None = None,
    ) -> RulePage:
        """Non-deleted rules, newest first.

        ``page`` is 1-based; ``limit`` is clamped to 1..MAX_PAGE_LIMIT.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_LIMIT)

        filters = [
            WorkflowRuleModel.company_id == company_id,
            WorkflowRuleModel.deleted_at.is_(None),
        ]
        if workflow_type is not None:
            filters.append(WorkflowRuleModel.workflow_type == workflow_type)

        total = self.session.execute(
            select(func.count()).select_from(WorkflowRuleModel).where(*filters)
        ).scalar_one()

        rows = self.session.execute(
            select(WorkflowRuleModel)
            .where(*filters)
            .order_by(WorkflowRuleModel.created_at.desc(), WorkflowRuleModel.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return RulePage(
            items=tuple(r.to_dto() for r in rows),
            page=page,
            limit=limit,
            total=total,
        )

    def find_by_name(
        self,
        company_id: UUID,
        workflow_type: str,
        name: str,
    ) -> WorkflowRule | None:
        """Non-deleted rule with this name (used by config seeding)."""
        model = self.session.execute(
            select(WorkflowRuleModel)
            .where(
                WorkflowRuleModel.company_id == company_id,
                WorkflowRuleModel.workflow_type == workflow_type,
                WorkflowRuleModel.name == name,
                WorkflowRuleModel.deleted_at.is_(None),
            )
            .order_by(WorkflowRuleModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

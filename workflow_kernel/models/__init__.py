"""ORM models for the workflow kernel."""

from workflow_kernel.models.approval_instance import (
    ApprovalInstanceModel,
    ResolvedStepModel,
    StepOutcomeModel,
)
from workflow_kernel.models.audit_event import SYSTEM_ACTOR_ID, AuditAction, AuditEvent
from workflow_kernel.models.workflow_event import WorkflowEventModel
from workflow_kernel.models.workflow_rule import StepTemplateModel, WorkflowRuleModel

__all__ = [
    "ApprovalInstanceModel",
    "ResolvedStepModel",
    "StepOutcomeModel",
    "AuditAction",
    "AuditEvent",
    "SYSTEM_ACTOR_ID",
    "WorkflowEventModel",
    "StepTemplateModel",
    "WorkflowRuleModel",
]

"""Kernel services: session-scoped commands that flush but never commit."""

from workflow_kernel.services.approval_service import (
    ApprovalService,
    TransitionResult,
    status_view,
)
from workflow_kernel.services.auditor_service import AuditorService, AuditTrace
from workflow_kernel.services.event_bus import EventBus, Subscription
from workflow_kernel.services.rule_admin_service import UNSET, RuleAdminService

__all__ = [
    "ApprovalService",
    "TransitionResult",
    "status_view",
    "AuditorService",
    "AuditTrace",
    "EventBus",
    "Subscription",
    "RuleAdminService",
    "UNSET",
]

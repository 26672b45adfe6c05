"""
Module: workflow_services
Responsibility:
    Public surface of the approval workflow engine: the ApprovalEngine
    facade consumed by HR domains and the in-memory StaticDirectory.

Usage:
    from workflow_services import ApprovalEngine, StaticDirectory

    engine = ApprovalEngine(get_session_factory(), directory)
    instance = engine.start_approval("LEAVE_APPROVAL", subject, context)
"""

from workflow_services.approval_engine import ApprovalEngine
from workflow_services.directory import StaticDirectory

__all__ = [
    "ApprovalEngine",
    "StaticDirectory",
]

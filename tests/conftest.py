"""
Pytest fixtures for the approval workflow test suite.

Provides:
- In-memory SQLite engine, session factory and session with every table
- A deterministic clock
- A small org chart (StaticDirectory) shared by most tests
- Rule admin, approval service and ApprovalEngine fixtures
- Structured log capture

PostgreSQL-only tests are marked ``postgres`` and read DATABASE_URL.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from io import StringIO
from uuid import UUID

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import workflow_kernel.models  # noqa: F401
from workflow_kernel.db.base import Base
from workflow_kernel.domain.approver import HR_ADMIN_ROLE
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.directory import EmployeeRecord
from workflow_kernel.domain.instance import SubjectContext, SubjectRef
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.approval_service import ApprovalService
from workflow_kernel.services.auditor_service import AuditorService
from workflow_kernel.services.rule_admin_service import RuleAdminService
from workflow_services import ApprovalEngine, StaticDirectory

START_TIME = datetime(2024, 3, 4, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, approval_engine):
            approval_engine.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    eng = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def clock():
    return DeterministicClock(START_TIME)


# =============================================================================
# Org chart
# =============================================================================

# Fixed ids so that "lowest employee id" tie-breaks are predictable.
COMPANY_ID = UUID("00000000-0000-0000-0000-00000000c0de")
OTHER_COMPANY_ID = UUID("00000000-0000-0000-0000-00000000beef")
ENGINEERING = UUID("00000000-0000-0000-0000-0000000000e1")
FINANCE = UUID("00000000-0000-0000-0000-0000000000f1")


@dataclass
class Org:
    """Employees of the test company, by role in the scenarios."""

    directory: StaticDirectory
    company_id: UUID
    engineering: UUID
    finance: UUID
    alice: UUID
    bob: UUID
    orphan: UUID
    manager: UUID
    dept_head: UUID
    hr_admin: UUID
    hr_admin_2: UUID
    executive: UUID
    foreign_hr_admin: UUID


@pytest.fixture
def org() -> Org:
    """
    Engineering:  alice -> manager (Mia) -> dept_head (Dan)
    Finance:      bob -> dept_head
    orphan:       no manager, no department
    HR_ADMIN:     hr_admin (lower id) and hr_admin_2
    EXECUTIVE:    executive
    Another company has its own HR_ADMIN with the lowest id of all.
    """
    ids = {name: UUID(int=n) for n, name in enumerate((
        "foreign_hr_admin", "hr_admin", "hr_admin_2", "executive",
        "dept_head", "manager", "alice", "bob", "orphan",
    ), start=1)}

    directory = StaticDirectory(department_heads={ENGINEERING: ids["dept_head"]})
    directory.add(EmployeeRecord(
        ids["foreign_hr_admin"], OTHER_COMPANY_ID, "Olga", roles=frozenset({HR_ADMIN_ROLE}),
    ))
    directory.add(EmployeeRecord(
        ids["hr_admin"], COMPANY_ID, "Hana", roles=frozenset({HR_ADMIN_ROLE}),
    ))
    directory.add(EmployeeRecord(
        ids["hr_admin_2"], COMPANY_ID, "Hugo", roles=frozenset({HR_ADMIN_ROLE}),
    ))
    directory.add(EmployeeRecord(
        ids["executive"], COMPANY_ID, "Eve", roles=frozenset({"EXECUTIVE"}),
    ))
    directory.add(EmployeeRecord(ids["dept_head"], COMPANY_ID, "Dan", ENGINEERING))
    directory.add(EmployeeRecord(
        ids["manager"], COMPANY_ID, "Mia", ENGINEERING, manager_id=ids["dept_head"],
    ))
    directory.add(EmployeeRecord(
        ids["alice"], COMPANY_ID, "Alice", ENGINEERING, manager_id=ids["manager"],
    ))
    directory.add(EmployeeRecord(
        ids["bob"], COMPANY_ID, "Bob", FINANCE, manager_id=ids["dept_head"],
    ))
    directory.add(EmployeeRecord(ids["orphan"], COMPANY_ID, "Otto"))

    return Org(
        directory=directory,
        company_id=COMPANY_ID,
        engineering=ENGINEERING,
        finance=FINANCE,
        **ids,
    )


@pytest.fixture
def admin_id(org) -> UUID:
    return org.hr_admin


def context_for(org: Org, requester: UUID, **kwargs) -> SubjectContext:
    return SubjectContext(requester_id=requester, company_id=org.company_id, **kwargs)


@pytest.fixture
def subject_factory():
    """Fresh subject references: ``subject_factory("LeaveRequest")``."""
    counter = iter(range(1, 1_000_000))

    def _make(subject_type: str = "LeaveRequest") -> SubjectRef:
        return SubjectRef(subject_type, UUID(int=0xA000_0000 + next(counter)))

    return _make


@pytest.fixture
def context(org):
    """Build a SubjectContext in the test company: ``context(org.alice)``."""

    def _make(requester: UUID, **kwargs) -> SubjectContext:
        return context_for(org, requester, **kwargs)

    return _make


# =============================================================================
# Service fixtures (single session, caller owns the transaction)
# =============================================================================


@pytest.fixture
def auditor_service(session, clock) -> AuditorService:
    return AuditorService(session, clock)


@pytest.fixture
def rule_admin(session, auditor_service, clock) -> RuleAdminService:
    return RuleAdminService(session, auditor_service, clock)


@pytest.fixture
def approval_service(session, auditor_service, org, clock) -> ApprovalService:
    return ApprovalService(session, auditor_service, org.directory, clock)


# =============================================================================
# Engine fixtures (one committed transaction per call)
# =============================================================================


@pytest.fixture
def approval_engine(session_factory, org, clock) -> ApprovalEngine:
    return ApprovalEngine(session_factory, org.directory, clock)


@pytest.fixture
def make_rule(session_factory, clock, org):
    """Create and commit a rule in its own transaction.

    ``make_rule("LEAVE_APPROVAL", [StepTemplate(1, DirectManager())])``
    """

    def _create(workflow_type, steps, name=None, conditions=None, is_active=True):
        session = session_factory()
        try:
            admin = RuleAdminService(session, AuditorService(session, clock), clock)
            rule = admin.create_rule(
                company_id=org.company_id,
                workflow_type=workflow_type,
                name=name or f"{workflow_type} rule",
                steps=steps,
                actor_id=org.hr_admin,
                conditions=conditions,
                is_active=is_active,
            )
            session.commit()
            return rule
        finally:
            session.close()

    return _create


@pytest.fixture
def recorded_events(approval_engine):
    """Every event the engine publishes, in delivery order."""
    events = []
    approval_engine.subscribe(events.append)
    return events

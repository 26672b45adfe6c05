"""
Employee directory boundary (``workflow_kernel.domain.directory``).

Responsibility
--------------
The read-only org-chart interface the engine consumes.  The HR
application owns employees, departments and role assignments; the engine
only asks four questions and never writes back.

Architecture position
---------------------
**Kernel domain layer** -- the ``Directory`` protocol and the
``EmployeeRecord`` value object.  Concrete implementations live outside
the kernel (``workflow_services.directory.StaticDirectory`` for tests and
seeding; the host application supplies a database-backed one).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class EmployeeRecord:
    """A directory entry as seen by the engine."""

    employee_id: UUID
    company_id: UUID
    name: str = ""
    department_id: UUID | None = None
    manager_id: UUID | None = None
    roles: frozenset[str] = frozenset()
    is_active: bool = True


@dataclass(frozen=True)
class ApproverIdentity:
    """A concrete approver copied out of the directory."""

    employee_id: UUID
    name: str = ""


@runtime_checkable
class Directory(Protocol):
    """Pluggable, read-only interface for org-chart lookups.

    Every method returns ``None`` / an empty list for unknown ids rather
    than raising.
    """

    def get_employee(self, employee_id: UUID) -> EmployeeRecord | None:
        """Return the employee, active or not."""
        ...

    def get_manager(self, employee_id: UUID) -> EmployeeRecord | None:
        """Return the immediate manager of an employee."""
        ...

    def get_department_head(self, department_id: UUID) -> EmployeeRecord | None:
        """Return the head of a department."""
        ...

    def list_employees_with_role(
        self, role_code: str, company_id: UUID,
    ) -> list[EmployeeRecord]:
        """Return every employee of the company holding ``role_code``."""
        ...

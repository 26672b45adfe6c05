"""
StaticDirectory -- in-memory Directory implementation.

Used by tests, local tooling and any host that already holds the org
chart in memory.  The engine only reads from it.

    directory = StaticDirectory()
    directory.add(EmployeeRecord(manager_id, company_id, "Mia"))
    directory.add(EmployeeRecord(alice_id, company_id, "Alice", manager_id=manager_id))
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from uuid import UUID

from workflow_kernel.domain.directory import EmployeeRecord


class StaticDirectory:
    """Dictionary-backed org chart satisfying the ``Directory`` protocol."""

    def __init__(
        self,
        employees: Iterable[EmployeeRecord] = (),
        department_heads: dict[UUID, UUID] | None = None,
    ) -> None:
        self._employees: dict[UUID, EmployeeRecord] = {}
        self._department_heads: dict[UUID, UUID] = dict(department_heads or {})
        for employee in employees:
            self.add(employee)

    # Mutators (test/tooling side only)

    def add(self, employee: EmployeeRecord) -> EmployeeRecord:
        self._employees[employee.employee_id] = employee
        return employee

    def set_department_head(self, department_id: UUID, employee_id: UUID | None) -> None:
        if employee_id is None:
            self._department_heads.pop(department_id, None)
        else:
            self._department_heads[department_id] = employee_id

    def deactivate(self, employee_id: UUID) -> None:
        self._employees[employee_id] = replace(self._employees[employee_id], is_active=False)

    # Directory protocol

    def get_employee(self, employee_id: UUID) -> EmployeeRecord | None:
        return self._employees.get(employee_id)

    def get_manager(self, employee_id: UUID) -> EmployeeRecord | None:
        employee = self._employees.get(employee_id)
        if employee is None or employee.manager_id is None:
            return None
        return self._employees.get(employee.manager_id)

    def get_department_head(self, department_id: UUID) -> EmployeeRecord | None:
        head_id = self._department_heads.get(department_id)
        return self._employees.get(head_id) if head_id is not None else None

    def list_employees_with_role(
        self, role_code: str, company_id: UUID,
    ) -> list[EmployeeRecord]:
        return [
            e for e in self._employees.values()
            if role_code in e.roles and e.company_id == company_id
        ]

    def __len__(self) -> int:
        return len(self._employees)

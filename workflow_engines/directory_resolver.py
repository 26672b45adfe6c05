"""
workflow_engines.directory_resolver -- Abstract approver -> concrete employee.

Responsibility:
    Given the employee whose request is being approved and an approver
    specification, return the concrete approver identity or ``None``.

Architecture position:
    Engines -- pure read against the ``Directory`` protocol.  Never
    writes, never raises for "not found".

Invariants enforced:
    - Only active employees are ever returned.
    - Role lookups are scoped to the subject's company.
    - Multiple role holders: the holder with the lowest employee id wins,
      so resolution is reproducible across runs and processes.

Failure modes:
    - Returns ``None`` when the subject is unknown, the reference is unset,
      or the resolved employee is inactive.  The step sequencer decides
      whether that is fatal.
"""

from __future__ import annotations

from uuid import UUID

from workflow_kernel.domain.approver import (
    HR_ADMIN_ROLE,
    ApproverSpec,
    DepartmentHead,
    DirectManager,
    HrAdmin,
    SpecificEmployee,
    SpecificRole,
)
from workflow_kernel.domain.directory import (
    ApproverIdentity,
    Directory,
    EmployeeRecord,
)


def _identity(record: EmployeeRecord | None) -> ApproverIdentity | None:
    if record is None or not record.is_active:
        return None
    return ApproverIdentity(employee_id=record.employee_id, name=record.name)


def _lowest_active(
    holders: list[EmployeeRecord], company_id: UUID,
) -> EmployeeRecord | None:
    active = [
        h for h in holders
        if h.is_active and h.company_id == company_id
    ]
    if not active:
        return None
    return min(active, key=lambda h: h.employee_id)


def resolve_approver(
    directory: Directory,
    employee_id: UUID,
    approver: ApproverSpec,
    *,
    company_id: UUID | None = None,
    department_id: UUID | None = None,
) -> ApproverIdentity | None:
    """Resolve ``approver`` for the request of ``employee_id``.

    Args:
        directory: Read-only org-chart lookups.
        employee_id: The employee who owns the request.
        approver: The step's approver specification.
        company_id: Company scope for role lookups; defaults to the
            employee's company.
        department_id: Department override; defaults to the employee's
            department.

    Returns:
        The approver identity, or None if nobody qualifies.
    """
    if isinstance(approver, SpecificEmployee):
        return _identity(directory.get_employee(approver.employee_id))

    if isinstance(approver, DirectManager):
        return _identity(directory.get_manager(employee_id))

    subject = directory.get_employee(employee_id)

    if isinstance(approver, DepartmentHead):
        dept = department_id or (subject.department_id if subject else None)
        if dept is None:
            return None
        return _identity(directory.get_department_head(dept))

    company = company_id or (subject.company_id if subject else None)
    if company is None:
        return None

    if isinstance(approver, HrAdmin):
        role_code = HR_ADMIN_ROLE
    elif isinstance(approver, SpecificRole):
        role_code = approver.role_code
    else:
        raise TypeError(f"Unknown approver specification: {approver!r}")

    holder = _lowest_active(directory.list_employees_with_role(role_code, company), company)
    return _identity(holder)

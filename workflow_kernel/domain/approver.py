"""
Approver specifications (``workflow_kernel.domain.approver``).

Responsibility
--------------
The abstract "who approves this step" of a step template, modelled as a
tagged variant so that the reference a kind needs is present by
construction:

* ``DirectManager()``            -- the subject's immediate manager
* ``DepartmentHead()``           -- head of the subject's department
* ``HrAdmin()``                  -- an HR administrator of the company
* ``SpecificRole(role_code)``    -- a holder of ``role_code``
* ``SpecificEmployee(employee_id)`` -- exactly that employee

Persistence and YAML use a flat (kind, role_code, employee_id) triple;
``approver_from_parts`` is the single place that turns the triple back
into a variant and rejects invalid pairings.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union
from uuid import UUID

from workflow_kernel.exceptions import InvalidStepTemplateError

# Role code that identifies HR administrators in the directory.
HR_ADMIN_ROLE = "HR_ADMIN"


class ApproverKind(str, Enum):
    """Discriminator of the approver variant (stored in the database)."""

    DIRECT_MANAGER = "DIRECT_MANAGER"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    HR_ADMIN = "HR_ADMIN"
    SPECIFIC_ROLE = "SPECIFIC_ROLE"
    SPECIFIC_EMPLOYEE = "SPECIFIC_EMPLOYEE"


@dataclass(frozen=True)
class DirectManager:
    kind = ApproverKind.DIRECT_MANAGER


@dataclass(frozen=True)
class DepartmentHead:
    kind = ApproverKind.DEPARTMENT_HEAD


@dataclass(frozen=True)
class HrAdmin:
    kind = ApproverKind.HR_ADMIN


@dataclass(frozen=True)
class SpecificRole:
    """Any active holder of ``role_code`` in the subject's company."""

    role_code: str
    kind = ApproverKind.SPECIFIC_ROLE

    def __post_init__(self) -> None:
        if not self.role_code or not self.role_code.strip():
            raise InvalidStepTemplateError(None, "SPECIFIC_ROLE requires a role code")


@dataclass(frozen=True)
class SpecificEmployee:
    """A named employee; resolution fails if that employee is inactive."""

    employee_id: UUID
    kind = ApproverKind.SPECIFIC_EMPLOYEE


ApproverSpec = Union[DirectManager, DepartmentHead, HrAdmin, SpecificRole, SpecificEmployee]


def approver_from_parts(
    kind: ApproverKind | str,
    role_code: str | None = None,
    employee_id: UUID | str | None = None,
    *,
    step_order: int | None = None,
) -> ApproverSpec:
    """Build an approver variant from its flat representation.

    A reference must be supplied exactly when the kind needs it:
    ``SPECIFIC_ROLE`` needs ``role_code`` and forbids ``employee_id``;
    ``SPECIFIC_EMPLOYEE`` needs ``employee_id`` and forbids ``role_code``;
    every other kind forbids both.

    Raises:
        InvalidStepTemplateError: unknown kind or invalid pairing.
    """
    try:
        kind = ApproverKind(kind)
    except ValueError:
        raise InvalidStepTemplateError(step_order, f"Unknown approver type: {kind!r}")

    if kind == ApproverKind.SPECIFIC_ROLE:
        if employee_id is not None:
            raise InvalidStepTemplateError(
                step_order, "SPECIFIC_ROLE must not carry an employee reference",
            )
        if not role_code:
            raise InvalidStepTemplateError(step_order, "SPECIFIC_ROLE requires a role code")
        return SpecificRole(role_code=role_code)

    if kind == ApproverKind.SPECIFIC_EMPLOYEE:
        if role_code is not None:
            raise InvalidStepTemplateError(
                step_order, "SPECIFIC_EMPLOYEE must not carry a role reference",
            )
        if employee_id is None:
            raise InvalidStepTemplateError(
                step_order, "SPECIFIC_EMPLOYEE requires an employee reference",
            )
        if not isinstance(employee_id, UUID):
            try:
                employee_id = UUID(str(employee_id))
            except ValueError:
                raise InvalidStepTemplateError(
                    step_order, f"Invalid employee reference: {employee_id!r}",
                )
        return SpecificEmployee(employee_id=employee_id)

    if role_code is not None or employee_id is not None:
        raise InvalidStepTemplateError(
            step_order, f"{kind.value} must not carry a role or employee reference",
        )
    if kind == ApproverKind.DIRECT_MANAGER:
        return DirectManager()
    if kind == ApproverKind.DEPARTMENT_HEAD:
        return DepartmentHead()
    return HrAdmin()


def approver_to_parts(approver: ApproverSpec) -> tuple[ApproverKind, str | None, UUID | None]:
    """Flatten a variant to (kind, role_code, employee_id) for storage."""
    if isinstance(approver, SpecificRole):
        return approver.kind, approver.role_code, None
    if isinstance(approver, SpecificEmployee):
        return approver.kind, None, approver.employee_id
    return approver.kind, None, None

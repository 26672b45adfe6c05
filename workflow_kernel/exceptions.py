"""
Typed exception hierarchy for the workflow kernel.

Every error the engine can surface has its own class with a static ``code``
attribute (machine-readable, API-safe) and carries its context as
attributes rather than only in the message string.  Callers catch by type:

    try:
        engine.approve(instance_id, actor_id, step_index)
    except NotCurrentApproverError as e:
        ui.show("You are not the current approver", step=e.step_index)
    except AlreadyFinalizedError:
        ui.show("This request has already been decided")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- ConfigurationError
    |   +-- NoApplicableRuleError
    |   +-- UnresolvableApproverError
    |   +-- InvalidStepTemplateError
    |   +-- InvalidRuleError
    |   +-- AmbiguousRuleError
    |   +-- RuleNotFoundError
    |
    +-- InstanceError
    |   +-- ApprovalInstanceNotFoundError
    |   +-- AlreadyFinalizedError
    |   +-- DuplicateApprovalInstanceError
    |   +-- AutoAdvanceNotDueError
    |
    +-- AuthorizationError
    |   +-- NotCurrentApproverError
    |   +-- NotSubjectOwnerError
    |
    +-- ConcurrencyError
    |   +-- StepAlreadyResolvedError
    |   +-- RuleEditConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- AuditChainBrokenError

===============================================================================
ERROR CATEGORIES
===============================================================================

ConfigurationError  -> surfaced to the administrator, never defaulted.
InstanceError       -> AlreadyFinalizedError is a benign no-op for retried
                       requests; the others are real failures.
AuthorizationError  -> "not your turn" / "not your request" in the UI.
ConcurrencyError    -> another writer won the same step; safe to drop.
ImmutabilityError   -> programming error or tampering; log loudly.
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Configuration errors


class ConfigurationError(WorkflowKernelError):
    """Base exception for rule and step configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class NoApplicableRuleError(ConfigurationError):
    """No active rule matches the workflow type and context."""

    code: str = "NO_APPLICABLE_RULE"

    def __init__(self, workflow_type: str, company_id: str | None = None):
        self.workflow_type = workflow_type
        self.company_id = company_id
        scope = f" in company {company_id}" if company_id else ""
        super().__init__(
            f"No applicable workflow rule for {workflow_type}{scope}"
        )


class UnresolvableApproverError(ConfigurationError):
    """A non-skippable step has no approver for this subject."""

    code: str = "UNRESOLVABLE_APPROVER"

    def __init__(self, rule_name: str, step_order: int, approver_kind: str):
        self.rule_name = rule_name
        self.step_order = step_order
        self.approver_kind = approver_kind
        super().__init__(
            f"Rule '{rule_name}' step {step_order}: no approver could be "
            f"resolved for {approver_kind} and the step cannot be skipped"
        )


class InvalidStepTemplateError(ConfigurationError):
    """A step template failed save-time validation."""

    code: str = "INVALID_STEP_TEMPLATE"

    def __init__(self, step_order: int | None, reason: str):
        self.step_order = step_order
        self.reason = reason
        where = f"Step {step_order}" if step_order is not None else "Step"
        super().__init__(f"{where}: {reason}")


class InvalidRuleError(ConfigurationError):
    """A workflow rule failed save-time validation."""

    code: str = "INVALID_RULE"

    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        self.reason = reason
        super().__init__(f"Invalid workflow rule '{rule_name}': {reason}")


class AmbiguousRuleError(ConfigurationError):
    """Another active rule already covers the same type and conditions."""

    code: str = "AMBIGUOUS_RULE"

    def __init__(self, workflow_type: str, conflicting_rule_id: str):
        self.workflow_type = workflow_type
        self.conflicting_rule_id = conflicting_rule_id
        super().__init__(
            f"An active {workflow_type} rule with identical conditions "
            f"already exists: {conflicting_rule_id}"
        )


class RuleNotFoundError(ConfigurationError):
    """Workflow rule with given ID was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Workflow rule not found: {rule_id}")


# Instance lifecycle errors


class InstanceError(WorkflowKernelError):
    """Base exception for approval instance lifecycle errors."""

    code: str = "INSTANCE_ERROR"


class ApprovalInstanceNotFoundError(InstanceError):
    """Approval instance with given ID was not found."""

    code: str = "APPROVAL_INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Approval instance not found: {instance_id}")


class AlreadyFinalizedError(InstanceError):
    """The instance is terminal; the operation had no effect."""

    code: str = "ALREADY_FINALIZED"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(
            f"Approval instance {instance_id} is already {status}"
        )


class DuplicateApprovalInstanceError(InstanceError):
    """The subject already has a pending approval instance."""

    code: str = "DUPLICATE_APPROVAL_INSTANCE"

    def __init__(self, subject_type: str, subject_id: str, existing_id: str):
        self.subject_type = subject_type
        self.subject_id = subject_id
        self.existing_id = existing_id
        super().__init__(
            f"{subject_type} {subject_id} already has a pending approval: "
            f"{existing_id}"
        )


class AutoAdvanceNotDueError(InstanceError):
    """The current step has no timeout or its deadline has not passed."""

    code: str = "AUTO_ADVANCE_NOT_DUE"

    def __init__(self, instance_id: str, step_index: int, deadline: str | None):
        self.instance_id = instance_id
        self.step_index = step_index
        self.deadline = deadline
        super().__init__(
            f"Approval instance {instance_id} step {step_index} is not due "
            f"for auto-approval (deadline={deadline})"
        )


# Authorization errors


class AuthorizationError(WorkflowKernelError):
    """Base exception for actor authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class NotCurrentApproverError(AuthorizationError):
    """The actor is not the resolved approver of the current step."""

    code: str = "NOT_CURRENT_APPROVER"

    def __init__(self, instance_id: str, actor_id: str, step_index: int):
        self.instance_id = instance_id
        self.actor_id = actor_id
        self.step_index = step_index
        super().__init__(
            f"Actor {actor_id} is not the current approver of step "
            f"{step_index} on approval instance {instance_id}"
        )


class NotSubjectOwnerError(AuthorizationError):
    """Only the employee who submitted the request may cancel it."""

    code: str = "NOT_SUBJECT_OWNER"

    def __init__(self, instance_id: str, actor_id: str):
        self.instance_id = instance_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} does not own the subject of approval "
            f"instance {instance_id}"
        )


# Concurrency errors


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StepAlreadyResolvedError(ConcurrencyError):
    """Another transition already resolved the step this call targeted."""

    code: str = "STEP_ALREADY_RESOLVED"

    def __init__(self, instance_id: str, step_index: int | None, reason: str = ""):
        self.instance_id = instance_id
        self.step_index = step_index
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Step {step_index} of approval instance {instance_id} was "
            f"already resolved{detail}"
        )


class RuleEditConflictError(ConcurrencyError):
    """Another administrator saved the same rule version first."""

    code: str = "RULE_EDIT_CONFLICT"

    def __init__(self, rule_id: str, version: int):
        self.rule_id = rule_id
        self.version = version
        super().__init__(
            f"Workflow rule {rule_id} was modified concurrently (expected version {version})"
        )


# Immutability errors


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete a frozen chain step or outcome."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(ImmutabilityError):
    """Recomputed audit hash or link does not match the stored one."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, entity_type: str, entity_id: str, seq: int, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.seq = seq
        self.reason = reason
        super().__init__(
            f"Audit chain broken for {entity_type} {entity_id} at seq {seq}: {reason}"
        )

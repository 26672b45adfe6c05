"""Read-only query selectors for the workflow kernel."""

from workflow_kernel.selectors.base import BaseSelector
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.selectors.rule_selector import RuleSelector

__all__ = [
    "BaseSelector",
    "InstanceSelector",
    "RuleSelector",
]

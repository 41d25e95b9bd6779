"""Read-only selectors for the approval kernel."""

from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.definition_selector import DefinitionSelector
from approval_kernel.selectors.instance_selector import (
    InstanceSelector,
    StatusStatistics,
    WorkflowStatistics,
)

__all__ = [
    "BaseSelector",
    "DefinitionSelector",
    "InstanceSelector",
    "StatusStatistics",
    "WorkflowStatistics",
]

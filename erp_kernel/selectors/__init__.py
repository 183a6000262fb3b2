"""Read-only query selectors."""

from erp_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = ["WorkflowSelector"]

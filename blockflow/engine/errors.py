"""
Error Taxonomy for the Workflow Engine.

Validation errors are raised to the caller before a run exists.
Node errors are recorded on the failing node and never escape a run.
"""

from typing import List, Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""


# ============================================================
# Validation Errors
# ============================================================

class WorkflowValidationError(WorkflowError):
    """The workflow graph is structurally invalid."""


class MissingStarterError(WorkflowValidationError):
    """No node matches the graph's starter id."""

    def __init__(self, starter_id: str):
        super().__init__(f"Starter node '{starter_id}' not found in workflow")
        self.starter_id = starter_id


class DanglingEdgeError(WorkflowValidationError):
    """An edge references a node id that does not exist."""

    def __init__(self, edge_id: str, missing_node_id: str):
        super().__init__(
            f"Edge '{edge_id}' references unknown node '{missing_node_id}'"
        )
        self.edge_id = edge_id
        self.missing_node_id = missing_node_id


class CycleDetectedError(WorkflowValidationError):
    """A node reachable from the starter lies on a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(f"Cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle


# ============================================================
# Node Errors
# ============================================================

class NodeExecutionError(WorkflowError):
    """
    A node's behavior failed.

    Behaviors raise this (or a subclass) to fail their node with a message.
    Any other exception escaping a behavior is wrapped into one.
    """

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id


class UnknownNodeTypeError(NodeExecutionError):
    """The resolver has no behavior for a node's type."""

    def __init__(self, node_type: str, node_id: Optional[str] = None):
        super().__init__(f"Block type '{node_type}' not found or not executable", node_id)
        self.node_type = node_type


class NodeTimeoutError(NodeExecutionError):
    """A network call or the node itself exceeded its time limit."""


class NodeCancelledError(NodeExecutionError):
    """The run was cancelled while the node was in flight."""

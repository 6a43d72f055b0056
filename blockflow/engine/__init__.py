"""
Engine package - Workflow execution engine components.
"""

from blockflow.engine.errors import (
    WorkflowError,
    WorkflowValidationError,
    MissingStarterError,
    DanglingEdgeError,
    CycleDetectedError,
    NodeExecutionError,
    UnknownNodeTypeError,
    NodeTimeoutError,
    NodeCancelledError,
)
from blockflow.engine.graph import Node, Edge, WorkflowGraph
from blockflow.engine.state import OutputRegistry, ALL_OUTPUTS, RESULT_VALUE_KEY
from blockflow.engine.records import (
    NodeStatus,
    RunStatus,
    LogLevel,
    ExecutionLogEntry,
    NodeExecutionRecord,
    WorkflowExecutionRecord,
    ExecutionObserver,
)
from blockflow.engine.cancellation import (
    CancellationController,
    CancellationReason,
    CancellationToken,
)
from blockflow.engine.network import NetworkCapability, get_shared_client, close_shared_client
from blockflow.engine.node import (
    NodeContext,
    NodeBehavior,
    NodeTypeResolver,
    FunctionBehavior,
    MappingResolver,
)
from blockflow.engine.executor import (
    Scheduler,
    RunHandle,
    start_workflow,
    execute_workflow,
)

__all__ = [
    "WorkflowError",
    "WorkflowValidationError",
    "MissingStarterError",
    "DanglingEdgeError",
    "CycleDetectedError",
    "NodeExecutionError",
    "UnknownNodeTypeError",
    "NodeTimeoutError",
    "NodeCancelledError",
    "Node",
    "Edge",
    "WorkflowGraph",
    "OutputRegistry",
    "ALL_OUTPUTS",
    "RESULT_VALUE_KEY",
    "NodeStatus",
    "RunStatus",
    "LogLevel",
    "ExecutionLogEntry",
    "NodeExecutionRecord",
    "WorkflowExecutionRecord",
    "ExecutionObserver",
    "CancellationController",
    "CancellationReason",
    "CancellationToken",
    "NetworkCapability",
    "get_shared_client",
    "close_shared_client",
    "NodeContext",
    "NodeBehavior",
    "NodeTypeResolver",
    "FunctionBehavior",
    "MappingResolver",
    "Scheduler",
    "RunHandle",
    "start_workflow",
    "execute_workflow",
]

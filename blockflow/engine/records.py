"""
Execution Records and Log.

The audit trail of one run: per-node records, the append-only log and the
run-level record that is frozen exactly once when the run terminates.
Observers are notified of every log entry and node status change.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
import asyncio
import copy
import inspect
import itertools
import logging
import uuid


logger = logging.getLogger(__name__)


class NodeStatus(str, Enum):
    """Status of a single node within a run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCESS, NodeStatus.ERROR, NodeStatus.CANCELLED)


class RunStatus(str, Enum):
    """Status of a workflow run."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_log_sequence = itertools.count(1)


def _elapsed_ms(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() * 1000


@dataclass(frozen=True)
class ExecutionLogEntry:
    """A single entry in a run's execution log."""
    message: str
    level: LogLevel = LogLevel.INFO
    node_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: f"log-{next(_log_sequence)}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "node_id": self.node_id,
            "message": self.message,
            "level": self.level.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class NodeExecutionRecord:
    """Execution record for one node of a run."""
    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def mark_running(self) -> None:
        if self.status != NodeStatus.PENDING:
            raise RuntimeError(
                f"Node '{self.node_id}' cannot start from status '{self.status.value}'"
            )
        self.status = NodeStatus.RUNNING
        self.start_time = datetime.now()

    def finish(
        self,
        status: NodeStatus,
        outputs: Dict[str, Any],
        error: Optional[str] = None,
    ) -> None:
        if self.status != NodeStatus.RUNNING or not status.is_terminal:
            raise RuntimeError(
                f"Node '{self.node_id}' cannot move from "
                f"'{self.status.value}' to '{status.value}'"
            )
        self.status = status
        self.outputs = outputs
        self.error = error if status == NodeStatus.ERROR else None
        self.end_time = datetime.now()
        self.duration_ms = _elapsed_ms(self.start_time, self.end_time)

    def snapshot(self) -> "NodeExecutionRecord":
        return replace(self, outputs=copy.deepcopy(self.outputs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "outputs": self.outputs,
            "error": self.error,
        }


@dataclass
class WorkflowExecutionRecord:
    """
    Full audit trail of one run.

    Created already ``running`` at run start, mutated only by the scheduler,
    and frozen exactly once by ``finalize()``.
    """
    workflow_id: str
    id: str = field(default_factory=lambda: f"exec-{uuid.uuid4().hex[:12]}")
    status: RunStatus = RunStatus.RUNNING
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    logs: List[ExecutionLogEntry] = field(default_factory=list)
    node_executions: Dict[str, NodeExecutionRecord] = field(default_factory=dict)

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    def finalize(self, status: RunStatus) -> None:
        if self.is_finalized:
            raise RuntimeError(f"Execution '{self.id}' is already finalized")
        if status == RunStatus.RUNNING:
            raise ValueError("A run cannot be finalized as 'running'")
        self.status = status
        self.end_time = datetime.now()
        self.duration_ms = _elapsed_ms(self.start_time, self.end_time)

    def nodes_with_status(self, status: NodeStatus) -> List[str]:
        return [
            node_id for node_id, record in self.node_executions.items()
            if record.status == status
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "logs": [entry.to_dict() for entry in self.logs],
            "node_executions": {
                node_id: record.to_dict()
                for node_id, record in self.node_executions.items()
            },
        }


# ============================================================
# Observers
# ============================================================

LogCallback = Callable[[ExecutionLogEntry], Any]
NodeUpdateCallback = Callable[[NodeExecutionRecord], Any]


@runtime_checkable
class ExecutionObserver(Protocol):
    """Read-only subscriber to a run's log and node status changes."""

    def on_log_entry(self, entry: ExecutionLogEntry) -> None:
        ...

    def on_node_status_change(self, record: NodeExecutionRecord) -> None:
        ...


class ExecutionLog:
    """
    Append-only log of a run that fans out notifications to observers.

    Callbacks receive immutable entries or record snapshots, so they can
    read but never mutate engine state. A failing callback is logged and
    ignored. Coroutine callbacks are scheduled on the running loop.
    """

    def __init__(self, record: WorkflowExecutionRecord):
        self._record = record
        self._log_callbacks: List[LogCallback] = []
        self._node_callbacks: List[NodeUpdateCallback] = []
        self._pending: set = set()

    def subscribe(self, observer: ExecutionObserver) -> None:
        self._log_callbacks.append(observer.on_log_entry)
        self._node_callbacks.append(observer.on_node_status_change)

    def unsubscribe(self, observer: ExecutionObserver) -> None:
        """Stop notifying an observer. Unknown observers are ignored."""
        if observer.on_log_entry in self._log_callbacks:
            self._log_callbacks.remove(observer.on_log_entry)
        if observer.on_node_status_change in self._node_callbacks:
            self._node_callbacks.remove(observer.on_node_status_change)

    def on_log_entry(self, callback: LogCallback) -> None:
        self._log_callbacks.append(callback)

    def on_node_status_change(self, callback: NodeUpdateCallback) -> None:
        self._node_callbacks.append(callback)

    def append(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        node_id: Optional[str] = None,
    ) -> ExecutionLogEntry:
        entry = ExecutionLogEntry(message=message, level=level, node_id=node_id)
        self._record.logs.append(entry)
        for callback in list(self._log_callbacks):
            self._notify(callback, entry)
        return entry

    def node_changed(self, record: NodeExecutionRecord) -> None:
        for callback in list(self._node_callbacks):
            self._notify(callback, record.snapshot())

    def _notify(self, callback: Callable[[Any], Any], payload: Any) -> None:
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._observer_task_done)
        except Exception as e:
            logger.warning(f"Execution observer failed: {e}")

    def _observer_task_done(self, task: "asyncio.Future") -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Execution observer failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for scheduled async observer callbacks to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

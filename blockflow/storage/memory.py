"""
In-Memory Storage for Blockflow.

Stores workflow definitions and runs for the HTTP service. The engine
never touches this module; it is the service's persistence collaborator
and can be replaced with a database implementation.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from blockflow.engine.executor import RunHandle
from blockflow.engine.graph import WorkflowGraph
from blockflow.engine.records import WorkflowExecutionRecord


@dataclass
class StoredWorkflow:
    """A stored workflow definition."""
    workflow: WorkflowGraph
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def workflow_id(self) -> str:
        return self.workflow.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "name": self.workflow.name,
            "definition": self.workflow.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class StoredRun:
    """
    A stored execution run.

    While the run is in flight ``handle`` and ``task`` are set; the record
    is the live execution record and becomes final when the task completes.
    """
    handle: RunHandle
    task: Optional["asyncio.Task[WorkflowExecutionRecord]"] = None

    @property
    def run_id(self) -> str:
        return self.handle.execution_id

    @property
    def workflow_id(self) -> str:
        return self.handle.workflow_id

    @property
    def record(self) -> WorkflowExecutionRecord:
        return self.handle.record

    @property
    def done(self) -> bool:
        return self.record.is_finalized

    def to_dict(self) -> Dict[str, Any]:
        return self.record.to_dict()


class WorkflowStorage:
    """
    In-memory storage for workflow definitions, guarded by an asyncio lock.
    """

    def __init__(self):
        self._workflows: Dict[str, StoredWorkflow] = {}
        self._lock = asyncio.Lock()

    async def save(self, workflow: WorkflowGraph) -> StoredWorkflow:
        """
        Save a workflow definition (replacing any previous version).

        Args:
            workflow: Validated workflow graph

        Returns:
            The stored workflow
        """
        async with self._lock:
            existing = self._workflows.get(workflow.id)
            stored = StoredWorkflow(workflow=workflow)
            if existing:
                stored.created_at = existing.created_at
            self._workflows[workflow.id] = stored
            return stored

    async def get(self, workflow_id: str) -> Optional[StoredWorkflow]:
        """Get a workflow by ID."""
        async with self._lock:
            return self._workflows.get(workflow_id)

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow."""
        async with self._lock:
            if workflow_id in self._workflows:
                del self._workflows[workflow_id]
                return True
            return False

    async def list_all(self) -> List[StoredWorkflow]:
        """List all stored workflows."""
        async with self._lock:
            return list(self._workflows.values())

    async def exists(self, workflow_id: str) -> bool:
        async with self._lock:
            return workflow_id in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)


class RunStorage:
    """
    In-memory storage for execution runs.

    Keeps the run handle so in-flight runs can be cancelled and observed.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def add(
        self,
        handle: RunHandle,
        task: Optional["asyncio.Task[WorkflowExecutionRecord]"] = None,
    ) -> StoredRun:
        """Register a started run."""
        async with self._lock:
            stored = StoredRun(handle=handle, task=task)
            self._runs[stored.run_id] = stored
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def cancel(self, run_id: str) -> Optional[bool]:
        """
        Request cancellation of a run.

        Returns:
            None if the run is unknown, else whether a new request was made
        """
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            if stored.done:
                return False
            return stored.handle.cancel()

    async def list_all(self) -> List[StoredRun]:
        """List all runs."""
        async with self._lock:
            return list(self._runs.values())

    async def list_by_workflow(self, workflow_id: str) -> List[StoredRun]:
        """List all runs for a specific workflow."""
        async with self._lock:
            return [r for r in self._runs.values() if r.workflow_id == workflow_id]

    async def delete(self, run_id: str) -> bool:
        """Delete a run."""
        async with self._lock:
            if run_id in self._runs:
                del self._runs[run_id]
                return True
            return False

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instances
workflow_storage = WorkflowStorage()
run_storage = RunStorage()

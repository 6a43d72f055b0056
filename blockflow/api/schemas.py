"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation. Workflow documents use
the same camelCase keys as the editor's saved workflows.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from blockflow.engine.graph import WorkflowGraph
from blockflow.engine.records import LogLevel, NodeStatus, RunStatus


# ============================================================
# Workflow Schemas
# ============================================================

class NodeDefinition(BaseModel):
    """Definition of a node in the workflow."""
    id: str = Field(..., description="Unique node id")
    type: str = Field(..., description="Block type (must be registered)")
    data: Dict[str, Any] = Field(default_factory=dict, description="Block configuration")
    timeout: Optional[float] = Field(None, gt=0, description="Node time limit in seconds")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "fetch",
                "type": "api",
                "data": {"method": "GET", "url": "https://httpbin.org/json"},
            }
        }


class EdgeDefinition(BaseModel):
    """A directed edge between two nodes."""
    id: Optional[str] = Field(None, description="Edge id (generated if omitted)")
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None
    label: Optional[str] = None


class WorkflowCreateRequest(BaseModel):
    """Request to create (or replace) a workflow."""
    id: Optional[str] = Field(None, description="Workflow id (generated if omitted)")
    name: str = Field(..., description="Name of the workflow")
    nodes: List[NodeDefinition] = Field(..., description="Nodes of the workflow")
    edges: List[EdgeDefinition] = Field(default_factory=list, description="Edges of the workflow")
    starterId: str = Field(..., description="Id of the starter node")
    variables: Dict[str, str] = Field(default_factory=dict, description="Default run variables")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "fetch_and_respond",
                "nodes": [
                    {"id": "start", "type": "starter"},
                    {"id": "fetch", "type": "api", "data": {"url": "https://httpbin.org/json"}},
                    {"id": "done", "type": "response", "data": {"message": "Status {{fetch.status}}"}},
                ],
                "edges": [
                    {"source": "start", "target": "fetch"},
                    {"source": "fetch", "target": "done"},
                ],
                "starterId": "start",
            }
        }

    def to_graph(self) -> WorkflowGraph:
        """Build the engine's graph model from the request."""
        return WorkflowGraph.model_validate(self.model_dump(exclude_none=True))


class WorkflowCreateResponse(BaseModel):
    """Response after creating a workflow."""
    workflow_id: str = Field(..., description="Unique identifier for the workflow")
    name: str
    message: str = Field(default="Workflow created successfully")
    node_count: int


class WorkflowInfoResponse(BaseModel):
    """Response with workflow information."""
    workflow_id: str
    name: str
    node_count: int
    nodes: List[str]
    starter_id: str
    created_at: str
    definition: Optional[Dict[str, Any]] = None
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the workflow")


class WorkflowListResponse(BaseModel):
    """Response listing all workflows."""
    workflows: List[WorkflowInfoResponse]
    total: int


# ============================================================
# Run Schemas
# ============================================================

class WorkflowRunRequest(BaseModel):
    """Request to run a stored workflow."""
    workflow_id: str = Field(..., description="ID of the workflow to run")
    env: Dict[str, str] = Field(default_factory=dict, description="Run variables")
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately"
    )
    fail_fast: Optional[bool] = Field(None, description="Override the failure policy")
    run_timeout: Optional[float] = Field(None, gt=0, description="Whole-run limit in seconds")

    class Config:
        json_schema_extra = {
            "example": {
                "workflow_id": "demo-diamond",
                "env": {"GREETING": "hello"},
                "async_execution": False,
            }
        }


class LogEntryResponse(BaseModel):
    """A single entry in the execution log."""
    id: str
    node_id: Optional[str]
    message: str
    level: LogLevel
    timestamp: str


class NodeExecutionResponse(BaseModel):
    """Execution record of one node."""
    node_id: str
    status: NodeStatus
    start_time: Optional[str]
    end_time: Optional[str]
    duration_ms: Optional[float]
    outputs: Dict[str, Any]
    error: Optional[str] = None


class ExecutionResponse(BaseModel):
    """A workflow execution record."""
    id: str = Field(..., description="Unique identifier for this run")
    workflow_id: str
    status: RunStatus
    start_time: str
    end_time: Optional[str]
    duration_ms: Optional[float]
    logs: List[LogEntryResponse]
    node_executions: Dict[str, NodeExecutionResponse]


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[ExecutionResponse]
    total: int


class CancelResponse(BaseModel):
    """Response after a cancellation request."""
    run_id: str
    cancelled: bool = Field(..., description="False if the run had already finished or was cancelled")
    status: RunStatus


# ============================================================
# Block Schemas
# ============================================================

class BlockInfo(BaseModel):
    """Information about a registered block type."""
    type: str
    name: str
    description: str
    category: str
    inputs: Dict[str, str]
    outputs: Dict[str, str]


class BlockListResponse(BaseModel):
    """Response listing registered block types."""
    blocks: List[BlockInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

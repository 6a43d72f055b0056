"""
Workflow API Routes.

Endpoints for creating, managing, and executing workflows, and for
inspecting and cancelling their runs.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, status
from pydantic import ValidationError
import logging

from blockflow.api.schemas import (
    CancelResponse,
    ErrorResponse,
    ExecutionResponse,
    RunListResponse,
    WorkflowCreateRequest,
    WorkflowCreateResponse,
    WorkflowInfoResponse,
    WorkflowListResponse,
    WorkflowRunRequest,
)
from blockflow.blocks import block_registry
from blockflow.engine import WorkflowValidationError, start_workflow
from blockflow.engine.records import WorkflowExecutionRecord
from blockflow.storage.memory import StoredWorkflow, run_storage, workflow_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


def _record_to_response(record: WorkflowExecutionRecord) -> ExecutionResponse:
    return ExecutionResponse.model_validate(record.to_dict())


def _workflow_info(stored: StoredWorkflow, detailed: bool = False) -> WorkflowInfoResponse:
    workflow = stored.workflow
    return WorkflowInfoResponse(
        workflow_id=workflow.id,
        name=workflow.name,
        node_count=len(workflow.nodes),
        nodes=[node.id for node in workflow.nodes],
        starter_id=workflow.starter_id,
        created_at=stored.created_at.isoformat(),
        definition=workflow.to_dict() if detailed else None,
        mermaid_diagram=workflow.to_mermaid() if detailed else None,
    )


# ============================================================
# Workflow CRUD Endpoints
# ============================================================

@router.post(
    "/",
    response_model=WorkflowCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid workflow definition"},
        404: {"model": ErrorResponse, "description": "Block type not found"},
    }
)
async def create_workflow(request: WorkflowCreateRequest) -> WorkflowCreateResponse:
    """
    Create (or replace) a workflow.

    The workflow is validated before it is stored: the starter must exist,
    every edge must reference existing nodes, and the graph must be acyclic.
    """
    for node in request.nodes:
        if not block_registry.has(node.type):
            raise HTTPException(
                status_code=404,
                detail=f"Block type '{node.type}' not found. "
                       f"Available: {[b['type'] for b in block_registry.list_blocks()]}"
            )

    try:
        workflow = request.to_graph()
        workflow.validate()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid workflow: {e.errors()[0]['msg']}")
    except WorkflowValidationError as e:
        raise HTTPException(status_code=400, detail=f"Workflow validation failed: {e}")

    await workflow_storage.save(workflow)
    logger.info(f"Created workflow: {workflow.id} ({workflow.name})")

    return WorkflowCreateResponse(
        workflow_id=workflow.id,
        name=workflow.name,
        node_count=len(workflow.nodes),
    )


@router.get(
    "/",
    response_model=WorkflowListResponse,
)
async def list_workflows() -> WorkflowListResponse:
    """List all stored workflows."""
    workflows = [_workflow_info(stored) for stored in await workflow_storage.list_all()]
    return WorkflowListResponse(workflows=workflows, total=len(workflows))


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/run",
    response_model=ExecutionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Workflow failed validation"},
        404: {"model": ErrorResponse},
    }
)
async def run_workflow(request: WorkflowRunRequest) -> ExecutionResponse:
    """
    Execute a stored workflow.

    Node failures do not fail the request; they are reported in the
    returned execution record. If `async_execution` is True, the workflow
    runs in the background and the live record is returned immediately;
    poll GET /workflows/runs/{run_id} for progress.
    """
    stored = await workflow_storage.get(request.workflow_id)
    if not stored:
        raise HTTPException(
            status_code=404,
            detail=f"Workflow '{request.workflow_id}' not found"
        )

    options = {}
    if request.fail_fast is not None:
        options["fail_fast"] = request.fail_fast
    if request.run_timeout is not None:
        options["run_timeout"] = request.run_timeout

    try:
        handle, task = start_workflow(stored.workflow, env=request.env, **options)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=400, detail=f"Workflow validation failed: {e}")

    await run_storage.add(handle, task)
    logger.info(f"Started run {handle.execution_id} of workflow {request.workflow_id}")

    if request.async_execution:
        return _record_to_response(handle.record)

    record = await task
    return _record_to_response(record)


@router.get(
    "/runs",
    response_model=RunListResponse,
)
async def list_runs(workflow_id: Optional[str] = None) -> RunListResponse:
    """List runs, optionally filtered by workflow."""
    if workflow_id:
        runs = await run_storage.list_by_workflow(workflow_id)
    else:
        runs = await run_storage.list_all()

    return RunListResponse(
        runs=[_record_to_response(run.record) for run in runs],
        total=len(runs),
    )


@router.get(
    "/runs/{run_id}",
    response_model=ExecutionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> ExecutionResponse:
    """
    Get the execution record of a run.

    Use this to poll the status of async executions.
    """
    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return _record_to_response(stored.record)


@router.post(
    "/runs/{run_id}/cancel",
    response_model=CancelResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cancel_run(run_id: str) -> CancelResponse:
    """
    Request cancellation of a running workflow.

    Running nodes are asked to stop; nodes that have not started stay
    pending. Cancelling a finished run is a no-op.
    """
    cancelled = await run_storage.cancel(run_id)
    if cancelled is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")

    stored = await run_storage.get(run_id)
    if cancelled:
        logger.info(f"Cancellation requested for run {run_id}")

    return CancelResponse(
        run_id=run_id,
        cancelled=cancelled,
        status=stored.record.status,
    )


# ============================================================
# Single Workflow Endpoints
# ============================================================

@router.get(
    "/{workflow_id}",
    response_model=WorkflowInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(workflow_id: str) -> WorkflowInfoResponse:
    """Get a workflow with its definition and a Mermaid diagram."""
    stored = await workflow_storage.get(workflow_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    return _workflow_info(stored, detailed=True)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_workflow(workflow_id: str):
    """Delete a workflow. Runs already started are unaffected."""
    deleted = await workflow_storage.delete(workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    logger.info(f"Deleted workflow: {workflow_id}")

"""
WebSocket Routes for Real-time Execution Streaming.

Streams log entries and node status changes live while a workflow runs.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from blockflow.engine import WorkflowValidationError, start_workflow
from blockflow.engine.records import ExecutionLogEntry, NodeExecutionRecord
from blockflow.storage.memory import StoredRun, run_storage, workflow_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


class RunEventQueue:
    """
    Execution observer that buffers events for one WebSocket connection.

    The scheduler calls the observer synchronously; the socket drains the
    queue at its own pace.
    """

    def __init__(self):
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def on_log_entry(self, entry: ExecutionLogEntry) -> None:
        self.queue.put_nowait({"type": "log", **entry.to_dict()})

    def on_node_status_change(self, record: NodeExecutionRecord) -> None:
        self.queue.put_nowait({"type": "node_status", **record.to_dict()})


async def _listen_for_cancel(websocket: WebSocket, stored: StoredRun) -> None:
    """Cancel the run when the client sends {"action": "cancel"} or leaves."""
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("action") == "cancel":
                if stored.handle.cancel():
                    logger.info(f"Run {stored.run_id} cancelled from WebSocket")
    except WebSocketDisconnect:
        logger.info(f"Client disconnected from run {stored.run_id}")
        stored.handle.cancel()


async def _stream_run(websocket: WebSocket, stored: StoredRun, events: RunEventQueue) -> None:
    """Send buffered events until the run finishes, then a completion message."""
    task = stored.task
    while True:
        if task is None or task.done():
            while not events.queue.empty():
                await websocket.send_json(events.queue.get_nowait())
            break

        getter = asyncio.ensure_future(events.queue.get())
        done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            await websocket.send_json(getter.result())
        else:
            getter.cancel()

    if task is not None:
        await asyncio.wait({task})
    record = stored.record
    await websocket.send_json({
        "type": "completed",
        "run_id": record.id,
        "workflow_id": record.workflow_id,
        "status": record.status.value,
        "duration_ms": record.duration_ms,
        "node_executions": {
            node_id: node.to_dict() for node_id, node in record.node_executions.items()
        },
    })


@router.websocket("/ws/run/{workflow_id}")
async def websocket_run(websocket: WebSocket, workflow_id: str):
    """
    WebSocket endpoint for real-time workflow execution.

    Connect to this endpoint and send the start message as JSON.
    You'll receive log entries and node status changes as they happen.

    Message format (client -> server):
    ```json
    {"action": "start", "env": {"API_KEY": "..."}}
    {"action": "cancel"}
    ```

    Message format (server -> client):
    ```json
    {"type": "started", "run_id": "exec-...", "workflow_id": "..."}
    {"type": "log", "id": "log-3", "node_id": "fetch", "message": "...", "level": "info", ...}
    {"type": "node_status", "node_id": "fetch", "status": "running", ...}
    {"type": "completed", "run_id": "exec-...", "status": "success", ...}
    ```
    """
    stored_workflow = await workflow_storage.get(workflow_id)
    if not stored_workflow:
        await websocket.close(code=4004, reason=f"Workflow '{workflow_id}' not found")
        return

    await websocket.accept()
    listener: Optional[asyncio.Task] = None
    stored: Optional[StoredRun] = None

    try:
        data = await websocket.receive_json()
        if not isinstance(data, dict) or data.get("action") != "start":
            await websocket.send_json({
                "type": "error",
                "error": "Expected 'start' action"
            })
            return

        events = RunEventQueue()
        try:
            handle, task = start_workflow(
                stored_workflow.workflow,
                env=data.get("env") or {},
                observers=[events],
            )
        except WorkflowValidationError as e:
            await websocket.send_json({"type": "error", "error": str(e)})
            return

        stored = await run_storage.add(handle, task)
        await websocket.send_json({
            "type": "started",
            "run_id": handle.execution_id,
            "workflow_id": workflow_id,
        })

        listener = asyncio.create_task(_listen_for_cancel(websocket, stored))
        await _stream_run(websocket, stored, events)

    except WebSocketDisconnect:
        logger.info(f"Client disconnected before run of {workflow_id} finished")
        if stored is not None:
            stored.handle.cancel()
    finally:
        if listener is not None:
            listener.cancel()
        if stored is not None:
            stored.handle.unsubscribe(events)


@router.websocket("/ws/subscribe/{run_id}")
async def websocket_subscribe(websocket: WebSocket, run_id: str):
    """
    Subscribe to updates for an existing run.

    Use this to watch an async execution started via POST /workflows/run.
    The current record is sent first; live events follow until completion.
    """
    stored = await run_storage.get(run_id)
    if not stored:
        await websocket.close(code=4004, reason=f"Run '{run_id}' not found")
        return

    await websocket.accept()

    events = RunEventQueue()
    stored.handle.subscribe(events)

    try:
        await websocket.send_json({
            "type": "current_state",
            **stored.record.to_dict(),
        })
        await _stream_run(websocket, stored, events)
    except WebSocketDisconnect:
        logger.info(f"Subscriber disconnected from run {run_id}")
    finally:
        stored.handle.unsubscribe(events)

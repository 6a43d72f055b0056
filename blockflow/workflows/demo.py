"""
Diamond Demo Workflow.

A small workflow demonstrating parallel branches and a join:

```
          ┌─→ shout ──┐
start ────┤           ├─→ join ─→ done
          └─→ count ──┘
```

`shout` and `count` run concurrently once `start` has finished; `join`
waits for both and `done` renders the final response.
"""

from typing import Optional
import logging

from blockflow.engine.graph import WorkflowGraph


logger = logging.getLogger(__name__)

DEMO_WORKFLOW_ID = "demo-diamond"


def create_demo_workflow(
    greeting: str = "hello",
    name: str = "blockflow",
    workflow_id: Optional[str] = None,
) -> WorkflowGraph:
    """
    Create the diamond demo workflow.

    Args:
        greeting: Default value of the GREETING variable
        name: Default value of the NAME variable
        workflow_id: Workflow id (defaults to the demo id)

    Returns:
        Validated WorkflowGraph
    """
    workflow = WorkflowGraph.from_dict({
        "id": workflow_id or DEMO_WORKFLOW_ID,
        "name": "Diamond Demo",
        "starterId": "start",
        "variables": {"GREETING": greeting, "NAME": name},
        "nodes": [
            {"id": "start", "type": "starter"},
            {
                "id": "shout",
                "type": "function",
                "data": {
                    "operation": "uppercase",
                    "arguments": {"text": "{{env.GREETING}}"},
                },
            },
            {
                "id": "count",
                "type": "function",
                "data": {
                    "operation": "length",
                    "arguments": {"value": "{{env.NAME}}"},
                },
            },
            {
                "id": "join",
                "type": "function",
                "data": {
                    "operation": "template",
                    "arguments": {
                        "text": "{greeting}, {letters} letters",
                        "greeting": "{{shout.result}}",
                        "letters": "{{count.result}}",
                    },
                },
            },
            {
                "id": "done",
                "type": "response",
                "data": {"message": "Result: {{join.result}}"},
            },
        ],
        "edges": [
            {"source": "start", "target": "shout"},
            {"source": "start", "target": "count"},
            {"source": "shout", "target": "join"},
            {"source": "count", "target": "join"},
            {"source": "join", "target": "done"},
        ],
    })
    workflow.validate()
    return workflow


async def register_demo_workflow() -> WorkflowGraph:
    """
    Register the demo workflow in storage.

    This makes the workflow available immediately via the API
    without needing to create it first.
    """
    from blockflow.storage.memory import workflow_storage

    workflow = create_demo_workflow()
    await workflow_storage.save(workflow)

    logger.info(f"Registered demo workflow with ID: {workflow.id}")
    return workflow


async def run_demo_workflow():
    """
    Run the demo workflow and print the outcome.

    Usage:
        import asyncio
        from blockflow.workflows.demo import run_demo_workflow
        asyncio.run(run_demo_workflow())
    """
    from blockflow.engine.executor import execute_workflow

    record = await execute_workflow(create_demo_workflow(), env={"NAME": "diamond"})

    print(f"Execution Status: {record.status.value}")
    print(f"Total Duration: {record.duration_ms:.2f}ms")
    for node_id, node in record.node_executions.items():
        print(f"  {node_id}: {node.status.value} ({node.duration_ms or 0:.2f}ms)")
    print(f"\nResponse: {record.node_executions['done'].outputs.get('message')}")
    return record

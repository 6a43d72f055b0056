"""
Workflows package - Sample workflow definitions.
"""

from blockflow.workflows.demo import (
    DEMO_WORKFLOW_ID,
    create_demo_workflow,
    register_demo_workflow,
)

__all__ = [
    "DEMO_WORKFLOW_ID",
    "create_demo_workflow",
    "register_demo_workflow",
]

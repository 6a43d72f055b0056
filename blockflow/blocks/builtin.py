"""
Built-in Blocks.

These are the block types every workflow can use out of the box: the
starter entry point, HTTP requests, condition evaluation, fixed-operation
functions and the final response.
"""

from typing import Any, Dict, Optional
from datetime import datetime
import json
import logging
import re

import httpx

from blockflow.blocks.expressions import ExpressionError, evaluate, resolve_references
from blockflow.blocks.operations import get_operation, list_operations
from blockflow.blocks.registry import register_block
from blockflow.engine.errors import NodeCancelledError, NodeExecutionError, NodeTimeoutError
from blockflow.engine.node import NodeContext


logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
DEFAULT_REQUEST_TIMEOUT_MS = 30000
NO_CONTENT = "No content available"

_CONTENT_PLACEHOLDER = re.compile(r"\{\{\s*content\s*\}\}")


def _reference_scopes(ctx: NodeContext) -> Dict[str, Any]:
    """Scopes for ``{{...}}`` references: every node's outputs plus ``env``."""
    scopes: Dict[str, Any] = dict(ctx.get_all_outputs())
    scopes["env"] = dict(ctx.env)
    return scopes


# ============================================================
# Starter
# ============================================================

@register_block(
    "starter",
    name="Start",
    description="Entry point for the workflow",
    category="io",
    outputs={"trigger": "Workflow started", "payload": "Initial payload"},
)
async def starter(ctx: NodeContext) -> Dict[str, Any]:
    result = {
        "startedAt": datetime.now().isoformat(),
        "workflowId": ctx.workflow_id,
    }
    ctx.set_output("trigger", True)
    ctx.set_output("payload", result)
    return result


# ============================================================
# HTTP Request
# ============================================================

def _parse_headers(ctx: NodeContext, headers: Any) -> Dict[str, str]:
    if isinstance(headers, str):
        if not headers.strip():
            return {}
        try:
            parsed = json.loads(headers)
        except json.JSONDecodeError:
            ctx.log("Warning: Headers is not valid JSON. It will be ignored.", "warn")
            return {}
        return {str(k): str(v) for k, v in parsed.items()} if isinstance(parsed, dict) else {}
    if isinstance(headers, dict):
        return {str(k): str(v) for k, v in headers.items()}
    return {}


def _timeout_seconds(value: Any) -> float:
    try:
        milliseconds = float(value) if value else DEFAULT_REQUEST_TIMEOUT_MS
    except (TypeError, ValueError):
        milliseconds = DEFAULT_REQUEST_TIMEOUT_MS
    return milliseconds / 1000


@register_block(
    "api",
    name="HTTP Request",
    description="Make HTTP requests to external APIs",
    inputs={
        "method": "HTTP method",
        "url": "Request URL",
        "headers": "Request headers (object or JSON string)",
        "body": "Request body",
        "timeout": "Request timeout in milliseconds",
    },
    outputs={
        "status": "HTTP status code",
        "headers": "Response headers",
        "data": "Response data",
        "error": "Error message if request failed",
    },
)
async def api(ctx: NodeContext) -> Dict[str, Any]:
    config = resolve_references(dict(ctx.configuration), _reference_scopes(ctx))

    method = str(config.get("method") or "GET").upper()
    if method not in ALLOWED_METHODS:
        method = "GET"
    url = str(config.get("url") or "").strip()

    if not url:
        message = "URL is required for HTTP Request block. Please set a valid URL."
        ctx.log(f"Request failed: {message}", "error")
        ctx.set_output("error", message)
        raise NodeExecutionError(f"HTTP request failed: {message}")

    request_kwargs: Dict[str, Any] = {
        "headers": {
            "Content-Type": "application/json",
            **_parse_headers(ctx, config.get("headers")),
        },
    }
    body = config.get("body")
    if body and method != "GET":
        request_kwargs["content"] = body if isinstance(body, str) else json.dumps(body)

    ctx.log(f"Making {method} request to {url}")

    try:
        response = await ctx.network.request(
            method, url, timeout=_timeout_seconds(config.get("timeout")), **request_kwargs
        )
    except (NodeCancelledError, NodeTimeoutError) as e:
        ctx.log(f"Request failed: {e.message}", "error")
        ctx.set_output("error", e.message)
        raise
    except httpx.HTTPError as e:
        message = str(e) or type(e).__name__
        ctx.log(f"Request failed: {message}", "error")
        ctx.set_output("error", message)
        raise NodeExecutionError(f"HTTP request failed: {message}") from e

    if "application/json" in response.headers.get("content-type", ""):
        try:
            data = response.json()
        except ValueError:
            data = response.text
    else:
        data = response.text

    result = {
        "status": response.status_code,
        "headers": dict(response.headers),
        "data": data,
    }
    ctx.set_output("status", result["status"])
    ctx.set_output("headers", result["headers"])
    ctx.set_output("data", result["data"])

    ctx.log(f"Request completed with status {response.status_code}")
    return result


# ============================================================
# Condition
# ============================================================

@register_block(
    "condition",
    name="Condition",
    description="Evaluate a sandboxed expression against prior outputs",
    category="control",
    inputs={"expression": "Expression to evaluate, e.g. status === 200 && data.success"},
    outputs={"result": "Condition result (true/false)"},
)
async def condition(ctx: NodeContext) -> Dict[str, Any]:
    expression = str(ctx.configuration.get("expression") or "")
    ctx.log(f"Evaluating condition: {expression}")

    outputs = ctx.get_all_outputs()
    scope: Dict[str, Any] = {}
    # Output keys are visible directly; later producers shadow earlier ones
    for slot in outputs.values():
        scope.update(slot)
    scope.update(outputs)
    scope["outputs"] = outputs
    scope["env"] = dict(ctx.env)
    scope["config"] = dict(ctx.configuration)

    try:
        result = bool(evaluate(expression, scope)) if expression.strip() else False
    except ExpressionError as e:
        ctx.log(f"Condition evaluation failed: {e}", "warn")
        result = False

    ctx.set_output("result", result)
    ctx.log(f"Condition result: {result}")
    return {"result": result}


# ============================================================
# Function
# ============================================================

@register_block(
    "function",
    name="Function",
    description="Run one operation from the built-in operation set",
    inputs={
        "operation": "Operation name",
        "arguments": "Keyword arguments; {{node.key}} and {{env.NAME}} are resolved",
    },
    outputs={
        "result": "Operation result",
        "error": "Error message if the operation failed",
    },
)
async def function(ctx: NodeContext) -> Dict[str, Any]:
    name = ctx.configuration.get("operation")
    operation = get_operation(str(name)) if name else None
    if operation is None:
        raise NodeExecutionError(
            f"Unknown operation '{name}'. Available: {list_operations()}"
        )

    arguments = resolve_references(
        dict(ctx.configuration.get("arguments") or {}), _reference_scopes(ctx)
    )
    ctx.log(f"Executing operation: {name}")

    try:
        result = operation(**arguments)
    except (TypeError, ValueError, KeyError, IndexError) as e:
        ctx.log(f"Function execution failed: {e}", "error")
        ctx.set_output("error", str(e))
        raise NodeExecutionError(f"Function execution error: {e}") from e

    for key, value in result.items():
        ctx.set_output(key, value)

    ctx.log("Function executed successfully")
    return result


# ============================================================
# Response
# ============================================================

def _find_content(ctx: NodeContext, source_node_id: Optional[str]) -> str:
    if source_node_id:
        content = ctx.get_output(source_node_id, "content")
        return content if isinstance(content, str) else NO_CONTENT

    for node_id, outputs in ctx.get_all_outputs().items():
        content = (outputs or {}).get("content")
        if isinstance(content, str):
            ctx.log(f"Found content from {node_id}")
            return content

    ctx.log("No content found in any node", "warn")
    return NO_CONTENT


@register_block(
    "response",
    name="Response",
    description="Final output of the workflow",
    category="io",
    inputs={
        "message": "Response message; {{content}} and {{node.key}} are substituted",
        "includeInputs": "Include every node's outputs as allData",
        "sourceNodeId": "Node to take {{content}} from",
        "data": "Response data",
    },
    outputs={"response": "Final workflow response"},
)
async def response(ctx: NodeContext) -> Dict[str, Any]:
    config = ctx.configuration
    scopes = _reference_scopes(ctx)

    message = str(config.get("message") or "Workflow completed")
    if _CONTENT_PLACEHOLDER.search(message):
        content = _find_content(ctx, config.get("sourceNodeId"))
        message = _CONTENT_PLACEHOLDER.sub(lambda _: content, message)
    message = str(resolve_references(message, scopes))

    result: Dict[str, Any] = {
        "message": message,
        "timestamp": datetime.now().isoformat(),
        "workflowId": ctx.workflow_id,
    }
    if config.get("data") is not None:
        result["data"] = resolve_references(config.get("data"), scopes)
    if config.get("includeInputs"):
        result["allData"] = ctx.get_all_outputs()

    ctx.set_output("response", result)
    ctx.log(f"Final response: {message}")
    return result

"""
Async Workflow Scheduler.

Runs the part of a workflow graph reachable from its starter node in
dependency order. A node starts only when every reachable predecessor has
succeeded; independent branches run concurrently on the event loop.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from collections import deque
import asyncio
import logging

import httpx

from blockflow.config import settings
from blockflow.engine.cancellation import CancellationController, CancellationReason
from blockflow.engine.errors import (
    NodeCancelledError,
    NodeExecutionError,
    UnknownNodeTypeError,
)
from blockflow.engine.graph import WorkflowGraph
from blockflow.engine.network import NetworkCapability, get_shared_client
from blockflow.engine.node import NodeContext, NodeTypeResolver
from blockflow.engine.records import (
    ExecutionLog,
    ExecutionLogEntry,
    ExecutionObserver,
    LogLevel,
    NodeExecutionRecord,
    NodeStatus,
    RunStatus,
    WorkflowExecutionRecord,
)
from blockflow.engine.state import RESULT_VALUE_KEY, OutputRegistry


logger = logging.getLogger(__name__)


def _default_resolver() -> NodeTypeResolver:
    from blockflow.blocks import block_registry
    return block_registry


class Scheduler:
    """
    Executes one run of a workflow graph.

    The scheduler exclusively owns the run's ``WorkflowExecutionRecord`` and
    ``OutputRegistry``. Construction validates the graph, so an invalid graph
    never produces a record.

    Usage:
        scheduler = Scheduler(graph, env={"API_KEY": "..."})
        record = await scheduler.run()
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        env: Optional[Mapping[str, str]] = None,
        resolver: Optional[NodeTypeResolver] = None,
        fail_fast: Optional[bool] = None,
        node_timeout: Optional[float] = None,
        run_timeout: Optional[float] = None,
        network_timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        graph.validate()

        self.graph = graph
        self.env: Dict[str, str] = {**graph.variables, **(env or {})}
        self.resolver = resolver or _default_resolver()
        self.fail_fast = settings.FAIL_FAST if fail_fast is None else fail_fast
        self.node_timeout = settings.NODE_TIMEOUT if node_timeout is None else node_timeout
        self.network_timeout = (
            settings.NETWORK_TIMEOUT if network_timeout is None else network_timeout
        )
        self._http_client = http_client

        self.controller = CancellationController(
            settings.RUN_TIMEOUT if run_timeout is None else run_timeout
        )
        self.outputs = OutputRegistry()
        self.record = WorkflowExecutionRecord(workflow_id=graph.id)
        self.log = ExecutionLog(self.record)

        # Bookkeeping is confined to the reachable subgraph
        self._reachable: List[str] = graph.reachable_from_starter()
        reachable = set(self._reachable)
        self._in_degree: Dict[str, int] = {
            node_id: len({
                edge.source for edge in graph.incoming_edges(node_id)
                if edge.source in reachable
            })
            for node_id in self._reachable
        }
        for node_id in self._reachable:
            self.record.node_executions[node_id] = NodeExecutionRecord(node_id=node_id)

        self._ready: deque = deque()
        self._running: Dict[asyncio.Task, str] = {}
        self._started = False

    # ------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------

    async def run(self) -> WorkflowExecutionRecord:
        """
        Execute the workflow and return the finalized execution record.

        Node failures never raise out of this method; they are reported
        through the record's status, node records and log.
        """
        if self._started:
            raise RuntimeError(f"Execution '{self.record.id}' has already been started")
        self._started = True

        logger.info(f"Starting workflow '{self.graph.name}' ({self.record.id})")
        self._emit(f"Starting workflow: {self.graph.name}")

        client = self._http_client or get_shared_client()
        self.controller.start()
        try:
            self._ready.append(self.graph.starter_id)

            while self._ready or self._running:
                self._launch_ready(client)
                if not self._running:
                    break

                done, _ = await asyncio.wait(
                    list(self._running), return_when=asyncio.FIRST_COMPLETED
                )
                # Handle completions in start order so bookkeeping is deterministic
                for task in [t for t in self._running if t in done]:
                    node_id = self._running.pop(task)
                    self._on_node_finished(node_id, task.result())

        except asyncio.CancelledError:
            # The run task itself was cancelled; tear down in-flight nodes
            self.controller.cancel(CancellationReason.USER)
            await self._abandon_running()
            self._finalize(RunStatus.CANCELLED)
            raise

        finally:
            self.controller.close()

        self._finalize(self._final_status())
        await self.log.drain()
        return self.record

    def _launch_ready(self, client: httpx.AsyncClient) -> None:
        """Start every ready node, in the order it became ready."""
        while self._ready:
            if self.controller.cancelled:
                skipped = list(self._ready)
                self._ready.clear()
                logger.debug(f"Not starting {skipped}: run is cancelled")
                return

            node_id = self._ready.popleft()
            record = self.record.node_executions[node_id]
            record.mark_running()
            self.log.node_changed(record)

            task = asyncio.create_task(
                self._execute_node(node_id, client), name=f"node:{node_id}"
            )
            self._running[task] = node_id

    def _on_node_finished(self, node_id: str, status: NodeStatus) -> None:
        """Release dependents of a successful node or apply the failure policy."""
        if status == NodeStatus.SUCCESS:
            for successor in self.graph.successors(node_id):
                if successor not in self._in_degree:
                    continue
                self._in_degree[successor] -= 1
                if self._in_degree[successor] == 0:
                    self._ready.append(successor)
                    logger.debug(f"Node '{successor}' ready (unblocked by '{node_id}')")

        elif status == NodeStatus.ERROR and self.fail_fast:
            if self.controller.cancel(CancellationReason.FAIL_FAST) and self._running:
                self._emit(
                    f"Stopping {len(self._running)} running node(s) after '{node_id}' failed",
                    LogLevel.WARN,
                )

    async def _abandon_running(self) -> None:
        for task in self._running:
            task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        # Tasks cancelled before their first step never recorded an outcome
        for node_id in self._running.values():
            record = self.record.node_executions[node_id]
            if record.status == NodeStatus.RUNNING:
                self._complete(record, NodeStatus.CANCELLED, None)
        self._running.clear()

    # ------------------------------------------------------------
    # Single node
    # ------------------------------------------------------------

    async def _execute_node(self, node_id: str, client: httpx.AsyncClient) -> NodeStatus:
        """Run one node's behavior and record the outcome. Never raises node errors."""
        node = self.graph.node_by_id(node_id)
        record = self.record.node_executions[node_id]
        timeout = node.timeout if node.timeout is not None else self.node_timeout
        token = self.controller.node_token(timeout)

        status = NodeStatus.SUCCESS
        error: Optional[str] = None
        try:
            self._emit(f"{node.type}: {node_id}", node_id=node_id)

            behavior = self.resolver.resolve(node.type)
            if behavior is None:
                raise UnknownNodeTypeError(node.type, node_id)

            context = NodeContext(
                workflow_id=self.graph.id,
                node_id=node_id,
                configuration=node.configuration,
                env=self.env,
                network=NetworkCapability(client, token, self.network_timeout),
                cancellation=token,
                registry=self.outputs,
                log_sink=self._append_log,
            )
            result = await behavior.run(context)
            self._publish(node_id, result)

        except NodeCancelledError as e:
            status, error = NodeStatus.CANCELLED, e.message
            self._emit(f"Node cancelled: {error}", LogLevel.WARN, node_id)

        except NodeExecutionError as e:
            status, error = NodeStatus.ERROR, e.message
            logger.error(f"Node {node_id} failed: {error}")
            self._emit(f"Node \"{node_id}\" failed: {error}", LogLevel.ERROR, node_id)

        except asyncio.CancelledError:
            self._complete(record, NodeStatus.CANCELLED, None)
            raise

        except Exception as e:
            status, error = NodeStatus.ERROR, str(e) or type(e).__name__
            logger.exception(f"Node {node_id} raised an unexpected error")
            self._emit(f"Node \"{node_id}\" failed: {error}", LogLevel.ERROR, node_id)

        finally:
            token.dispose()

        if status == NodeStatus.SUCCESS:
            self._emit(f"{node.type} completed", node_id=node_id)
        self._complete(record, status, error)
        return status

    def _publish(self, node_id: str, result: Any) -> None:
        """Merge a behavior's return value after its explicit writes."""
        if result is None:
            return
        if isinstance(result, Mapping):
            self.outputs.merge(node_id, dict(result))
        else:
            self.outputs.write(node_id, RESULT_VALUE_KEY, result)

    def _complete(self, record: NodeExecutionRecord, status: NodeStatus, error: Optional[str]) -> None:
        self.outputs.seal(record.node_id)
        record.finish(status, self.outputs.slot(record.node_id), error)
        self.log.node_changed(record)

    # ------------------------------------------------------------
    # Finalization and logging
    # ------------------------------------------------------------

    def _final_status(self) -> RunStatus:
        failed = self.record.nodes_with_status(NodeStatus.ERROR)
        if failed:
            self._emit(f"Workflow failed: node(s) {failed} ended in error", LogLevel.ERROR)
            return RunStatus.ERROR

        unfinished = (
            self.record.nodes_with_status(NodeStatus.CANCELLED)
            + self.record.nodes_with_status(NodeStatus.PENDING)
        )
        if self.controller.cancelled and unfinished:
            reason = self.controller.reason.value
            self._emit(f"Workflow cancelled ({reason})", LogLevel.WARN)
            return RunStatus.CANCELLED

        self._emit("Workflow completed")
        return RunStatus.SUCCESS

    def _finalize(self, status: RunStatus) -> None:
        if self.record.is_finalized:
            return
        self.record.finalize(status)
        logger.info(
            f"Workflow '{self.graph.name}' ({self.record.id}) finished: "
            f"{status.value} in {self.record.duration_ms:.1f}ms"
        )

    def _append_log(self, message: str, level: LogLevel, node_id: Optional[str]) -> None:
        if self.record.is_finalized:
            logger.debug(f"Dropping log after finalization: {message}")
            return
        self.log.append(message, level, node_id)

    def _emit(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        node_id: Optional[str] = None,
    ) -> ExecutionLogEntry:
        return self.log.append(message, level, node_id)


class RunHandle:
    """Handle to a started run: cancellation and observer subscription."""

    def __init__(self, scheduler: Scheduler):
        self._scheduler = scheduler

    @property
    def execution_id(self) -> str:
        return self._scheduler.record.id

    @property
    def workflow_id(self) -> str:
        return self._scheduler.graph.id

    @property
    def record(self) -> WorkflowExecutionRecord:
        """The live execution record (read-only for callers)."""
        return self._scheduler.record

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Copy of every output published so far, keyed by node id."""
        return self._scheduler.outputs.snapshot()

    @property
    def cancelled(self) -> bool:
        return self._scheduler.controller.cancelled

    def cancel(self) -> bool:
        """Request cancellation. Returns False if already requested."""
        return self._scheduler.controller.cancel(CancellationReason.USER)

    def subscribe(self, observer: ExecutionObserver) -> None:
        self._scheduler.log.subscribe(observer)

    def unsubscribe(self, observer: ExecutionObserver) -> None:
        self._scheduler.log.unsubscribe(observer)

    def on_log_entry(self, callback: Callable[[ExecutionLogEntry], Any]) -> None:
        self._scheduler.log.on_log_entry(callback)

    def on_node_status_change(self, callback: Callable[[NodeExecutionRecord], Any]) -> None:
        self._scheduler.log.on_node_status_change(callback)


def start_workflow(
    graph: WorkflowGraph,
    env: Optional[Mapping[str, str]] = None,
    resolver: Optional[NodeTypeResolver] = None,
    on_log: Optional[Callable[[ExecutionLogEntry], Any]] = None,
    on_node_update: Optional[Callable[[NodeExecutionRecord], Any]] = None,
    observers: Iterable[ExecutionObserver] = (),
    **options: Any,
) -> Tuple[RunHandle, "asyncio.Task[WorkflowExecutionRecord]"]:
    """
    Validate a graph and start running it on the current event loop.

    Validation errors are raised here, before any record exists. The
    returned task resolves to the final ``WorkflowExecutionRecord``.

    Args:
        graph: The workflow graph
        env: Read-only variables for node contexts (merged over graph variables)
        resolver: Node type resolver (defaults to the built-in block registry)
        on_log: Callback for each appended log entry
        on_node_update: Callback for each node status change
        observers: ``ExecutionObserver`` instances to subscribe
        **options: ``fail_fast``, ``node_timeout``, ``run_timeout``,
            ``network_timeout``, ``http_client``
    """
    scheduler = Scheduler(graph, env=env, resolver=resolver, **options)
    handle = RunHandle(scheduler)
    if on_log is not None:
        handle.on_log_entry(on_log)
    if on_node_update is not None:
        handle.on_node_status_change(on_node_update)
    for observer in observers:
        handle.subscribe(observer)

    task = asyncio.get_running_loop().create_task(
        scheduler.run(), name=f"workflow:{graph.id}"
    )
    return handle, task


async def execute_workflow(
    graph: WorkflowGraph,
    env: Optional[Mapping[str, str]] = None,
    resolver: Optional[NodeTypeResolver] = None,
    **kwargs: Any,
) -> WorkflowExecutionRecord:
    """Convenience wrapper: start a run and wait for its final record."""
    _, task = start_workflow(graph, env, resolver, **kwargs)
    return await task

"""
Tests for the Workflow Engine core components.
"""

import pytest
import asyncio
import time
from typing import Any, Dict, List, Tuple

import httpx
from pydantic import ValidationError

from blockflow.engine.graph import WorkflowGraph
from blockflow.engine.errors import (
    CycleDetectedError,
    DanglingEdgeError,
    MissingStarterError,
    NodeCancelledError,
    NodeExecutionError,
    NodeTimeoutError,
)
from blockflow.engine.state import OutputRegistry, SealedSlotError, ALL_OUTPUTS
from blockflow.engine.records import (
    ExecutionLogEntry,
    LogLevel,
    NodeExecutionRecord,
    NodeStatus,
    RunStatus,
    WorkflowExecutionRecord,
)
from blockflow.engine.cancellation import (
    CancellationController,
    CancellationReason,
    CancellationToken,
)
from blockflow.engine.node import FunctionBehavior, MappingResolver
from blockflow.engine.executor import RunHandle, Scheduler, execute_workflow, start_workflow
from blockflow.engine.network import close_shared_client, get_shared_client


# ============================================================
# Helpers
# ============================================================

def build_graph(
    nodes: List[Tuple[str, str, Dict[str, Any]]],
    edges: List[Tuple[str, str]],
    starter_id: str = "start",
) -> WorkflowGraph:
    """Build a graph from (id, type, data) tuples and (source, target) pairs."""
    return WorkflowGraph.from_dict({
        "id": "wf-test",
        "name": "Test Workflow",
        "starterId": starter_id,
        "nodes": [{"id": n, "type": t, "data": data} for n, t, data in nodes],
        "edges": [{"source": s, "target": t} for s, t in edges],
    })


async def start_block(ctx):
    return {"started": True}


async def sleep_block(ctx):
    delay = ctx.configuration.get("delay", 0)
    ctx.log(f"Sleeping {delay}s")
    await ctx.sleep(delay)
    return {"slept": delay}


async def fail_block(ctx):
    delay = ctx.configuration.get("delay", 0)
    if delay:
        await ctx.sleep(delay)
    raise NodeExecutionError(ctx.configuration.get("message", "boom"))


def make_resolver(**extra: Any) -> MappingResolver:
    return MappingResolver({
        "start": start_block,
        "sleep": sleep_block,
        "fail": fail_block,
        **extra,
    })


async def wait_for_status(
    handle: RunHandle, node_id: str, status: NodeStatus, timeout: float = 2.0
) -> None:
    """Wait until a node of a live run reaches a status."""
    deadline = time.monotonic() + timeout
    while handle.record.node_executions[node_id].status != status:
        if time.monotonic() > deadline:
            raise AssertionError(f"Node '{node_id}' never reached {status.value}")
        await asyncio.sleep(0.005)


# ============================================================
# Graph Tests
# ============================================================

class TestWorkflowGraph:
    """Tests for the WorkflowGraph model."""

    def test_parse_saved_document(self):
        """Test parsing the camelCase keys of a saved workflow."""
        graph = WorkflowGraph.from_dict({
            "id": "wf-1",
            "starterId": "start",
            "nodes": [
                {"id": "start", "type": "starter"},
                {"id": "fetch", "type": "api", "data": {"url": "https://example.com"}},
            ],
            "edges": [{"id": "e1", "source": "start", "target": "fetch", "sourceHandle": "out"}],
        })

        assert graph.starter_id == "start"
        assert graph.node_by_id("fetch").configuration == {"url": "https://example.com"}
        assert graph.edges[0].source_handle == "out"
        assert graph.to_dict()["starterId"] == "start"

    def test_duplicate_node_ids_rejected(self):
        """Test that node ids must be unique."""
        with pytest.raises(ValidationError, match="Duplicate node id"):
            build_graph([("start", "start", {}), ("start", "sleep", {})], [])

    def test_missing_starter(self):
        """Test validation fails when the starter does not exist."""
        graph = build_graph([("a", "start", {})], [], starter_id="start")
        with pytest.raises(MissingStarterError) as exc:
            graph.validate()
        assert exc.value.starter_id == "start"

    def test_dangling_edge(self):
        """Test validation fails when an edge references a missing node."""
        graph = build_graph([("start", "start", {})], [("start", "ghost")])
        with pytest.raises(DanglingEdgeError) as exc:
            graph.validate()
        assert exc.value.missing_node_id == "ghost"

    def test_reachable_cycle_rejected(self):
        """Test validation fails on a cycle reachable from the starter."""
        graph = build_graph(
            [("start", "start", {}), ("a", "sleep", {}), ("b", "sleep", {})],
            [("start", "a"), ("a", "b"), ("b", "a")],
        )
        with pytest.raises(CycleDetectedError, match="Cycle detected") as exc:
            graph.validate()
        assert set(exc.value.cycle) >= {"a", "b"}

    def test_unreachable_cycle_allowed(self):
        """Test that a cycle the starter cannot reach is ignored."""
        graph = build_graph(
            [("start", "start", {}), ("x", "sleep", {}), ("y", "sleep", {})],
            [("x", "y"), ("y", "x")],
        )
        graph.validate()
        assert graph.reachable_from_starter() == ["start"]

    def test_successors_are_distinct(self):
        """Test that parallel edges count once."""
        graph = build_graph(
            [("start", "start", {}), ("a", "sleep", {})],
            [("start", "a"), ("start", "a")],
        )
        assert graph.successors("start") == ["a"]

    def test_mermaid(self):
        """Test Mermaid diagram generation."""
        graph = build_graph([("start", "start", {}), ("a", "sleep", {})], [("start", "a")])
        mermaid = graph.to_mermaid()

        assert mermaid.startswith("graph TD")
        assert "start --> a" in mermaid


# ============================================================
# Output Registry Tests
# ============================================================

class TestOutputRegistry:
    """Tests for OutputRegistry."""

    def test_write_and_read(self):
        registry = OutputRegistry()
        registry.write("a", "x", 1)

        assert registry.get("a") == {"x": 1}
        assert registry.get("a", "x") == 1
        assert registry.get("a", "missing") is None
        assert registry.get("unknown") is None

    def test_reads_are_copies(self):
        """Test that mutating a read never changes the stored value."""
        registry = OutputRegistry()
        registry.write("a", "items", [1, 2])

        items = registry.get("a", "items")
        items.append(3)

        assert registry.get("a", "items") == [1, 2]

    def test_all_outputs_snapshot(self):
        registry = OutputRegistry()
        registry.write("a", "x", 1)
        registry.write("b", "y", 2)

        assert registry.get(ALL_OUTPUTS) == {"a": {"x": 1}, "b": {"y": 2}}

    def test_sealed_slot_rejects_writes(self):
        registry = OutputRegistry()
        registry.write("a", "x", 1)
        registry.seal("a")

        with pytest.raises(SealedSlotError):
            registry.write("a", "x", 2)
        with pytest.raises(SealedSlotError):
            registry.merge("a", {"y": 2})
        assert registry.get("a") == {"x": 1}
        assert registry.is_sealed("a")
        assert not registry.is_sealed("b")


# ============================================================
# Record Tests
# ============================================================

class TestRecords:
    """Tests for execution records."""

    def test_node_record_transitions(self):
        record = NodeExecutionRecord(node_id="a")
        assert record.status == NodeStatus.PENDING

        record.mark_running()
        assert record.status == NodeStatus.RUNNING
        assert record.start_time is not None

        record.finish(NodeStatus.SUCCESS, {"x": 1})
        assert record.status == NodeStatus.SUCCESS
        assert record.duration_ms is not None
        assert record.duration_ms >= 0

    def test_node_record_rejects_invalid_transition(self):
        record = NodeExecutionRecord(node_id="a")
        with pytest.raises(RuntimeError):
            record.finish(NodeStatus.SUCCESS, {})

    def test_run_record_finalizes_once(self):
        record = WorkflowExecutionRecord(workflow_id="wf")
        assert record.status == RunStatus.RUNNING

        record.finalize(RunStatus.SUCCESS)
        assert record.is_finalized
        with pytest.raises(RuntimeError):
            record.finalize(RunStatus.ERROR)

    def test_run_record_cannot_finalize_running(self):
        record = WorkflowExecutionRecord(workflow_id="wf")
        with pytest.raises(ValueError):
            record.finalize(RunStatus.RUNNING)


# ============================================================
# Cancellation Tests
# ============================================================

class TestCancellation:
    """Tests for cancellation tokens and the controller."""

    def test_cancel_once(self):
        token = CancellationToken()
        assert token.cancel(CancellationReason.USER) is True
        assert token.cancel(CancellationReason.FAIL_FAST) is False
        assert token.reason == CancellationReason.USER

    def test_child_follows_parent(self):
        parent = CancellationToken()
        child = parent.child()
        parent.cancel(CancellationReason.USER)

        assert child.cancelled
        assert child.reason == CancellationReason.USER

    def test_child_does_not_cancel_parent(self):
        parent = CancellationToken()
        child = parent.child()
        child.cancel()

        assert not parent.cancelled

    def test_error_types(self):
        cancelled = CancellationToken()
        cancelled.cancel(CancellationReason.USER)
        assert isinstance(cancelled.error(), NodeCancelledError)

        timed_out = CancellationToken()
        timed_out.cancel(CancellationReason.NODE_TIMEOUT)
        assert isinstance(timed_out.error(), NodeTimeoutError)

    @pytest.mark.asyncio
    async def test_child_timeout(self):
        """Test that a child deadline fires as a node timeout."""
        token = CancellationToken().child(timeout=0.02)
        with pytest.raises(NodeTimeoutError):
            await token.sleep(1)

    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        token = CancellationToken()

        async def compute():
            return 42

        assert await token.guard(compute()) == 42

    @pytest.mark.asyncio
    async def test_guard_interrupted(self):
        """Test that cancelling the token interrupts a guarded await."""
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel, CancellationReason.USER)

        started = time.perf_counter()
        with pytest.raises(NodeCancelledError):
            await token.guard(asyncio.sleep(1))
        assert time.perf_counter() - started < 0.5

    @pytest.mark.asyncio
    async def test_guard_timeout(self):
        token = CancellationToken()
        with pytest.raises(NodeTimeoutError, match="timed out"):
            await token.guard(asyncio.sleep(1), timeout=0.01)

    @pytest.mark.asyncio
    async def test_controller_run_timeout(self):
        controller = CancellationController(run_timeout=0.01)
        controller.start()
        await asyncio.sleep(0.05)

        assert controller.cancelled
        assert controller.reason == CancellationReason.RUN_TIMEOUT
        controller.close()


# ============================================================
# Scheduler Tests
# ============================================================

class TestScheduler:
    """Tests for DAG scheduling."""

    def test_invalid_graph_creates_no_record(self):
        """Test that validation fails before any record exists."""
        graph = build_graph(
            [("start", "start", {}), ("a", "sleep", {})],
            [("start", "a"), ("a", "start")],
        )
        with pytest.raises(CycleDetectedError):
            Scheduler(graph, resolver=make_resolver())

    @pytest.mark.asyncio
    async def test_linear_order(self):
        """Test that nodes run in dependency order."""
        order: List[str] = []

        async def track(ctx):
            order.append(ctx.node_id)
            return {"seen": list(order)}

        graph = build_graph(
            [("start", "track", {}), ("a", "track", {}), ("b", "track", {})],
            [("start", "a"), ("a", "b")],
        )
        record = await execute_workflow(graph, resolver=MappingResolver({"track": track}))

        assert record.status == RunStatus.SUCCESS
        assert order == ["start", "a", "b"]
        assert record.node_executions["b"].outputs == {"seen": ["start", "a", "b"]}

    @pytest.mark.asyncio
    async def test_diamond_runs_branches_concurrently(self):
        """Test that independent branches overlap in time."""
        graph = build_graph(
            [
                ("start", "start", {}),
                ("left", "sleep", {"delay": 0.2}),
                ("right", "sleep", {"delay": 0.2}),
                ("join", "sleep", {"delay": 0}),
            ],
            [("start", "left"), ("start", "right"), ("left", "join"), ("right", "join")],
        )

        started = time.perf_counter()
        record = await execute_workflow(graph, resolver=make_resolver())
        elapsed = time.perf_counter() - started

        assert record.status == RunStatus.SUCCESS
        assert elapsed < 0.35
        join = record.node_executions["join"]
        for branch in ("left", "right"):
            assert record.node_executions[branch].end_time <= join.start_time

    @pytest.mark.asyncio
    async def test_unreachable_nodes_have_no_record(self):
        graph = build_graph(
            [("start", "start", {}), ("orphan", "sleep", {})],
            [],
        )
        record = await execute_workflow(graph, resolver=make_resolver())

        assert record.status == RunStatus.SUCCESS
        assert "orphan" not in record.node_executions

    @pytest.mark.asyncio
    async def test_failure_blocks_descendants(self):
        """Test that a failed node's descendants never start."""
        graph = build_graph(
            [
                ("start", "start", {}),
                ("bad", "fail", {"message": "broken"}),
                ("after", "sleep", {}),
            ],
            [("start", "bad"), ("bad", "after")],
        )
        record = await execute_workflow(graph, resolver=make_resolver())

        assert record.status == RunStatus.ERROR
        assert record.node_executions["bad"].status == NodeStatus.ERROR
        assert record.node_executions["bad"].error == "broken"
        assert record.node_executions["after"].status == NodeStatus.PENDING

        errors = [e for e in record.logs if e.level == LogLevel.ERROR and e.node_id == "bad"]
        assert errors
        assert "broken" in errors[0].message

    @pytest.mark.asyncio
    async def test_fail_fast_cancels_running_siblings(self):
        """Test that a failure stops siblings that are still running."""
        graph = build_graph(
            [
                ("start", "start", {}),
                ("bad", "fail", {"delay": 0.01}),
                ("slow", "sleep", {"delay": 2}),
            ],
            [("start", "bad"), ("start", "slow")],
        )

        started = time.perf_counter()
        record = await execute_workflow(graph, resolver=make_resolver(), fail_fast=True)

        assert time.perf_counter() - started < 1
        assert record.status == RunStatus.ERROR
        assert record.node_executions["slow"].status == NodeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_without_fail_fast_siblings_finish(self):
        """Test that independent branches complete when fail-fast is off."""
        graph = build_graph(
            [
                ("start", "start", {}),
                ("bad", "fail", {}),
                ("good", "sleep", {"delay": 0.05}),
                ("after_good", "sleep", {}),
            ],
            [("start", "bad"), ("start", "good"), ("good", "after_good")],
        )
        record = await execute_workflow(graph, resolver=make_resolver(), fail_fast=False)

        assert record.status == RunStatus.ERROR
        assert record.node_executions["good"].status == NodeStatus.SUCCESS
        assert record.node_executions["after_good"].status == NodeStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_node_type(self):
        graph = build_graph(
            [("start", "start", {}), ("mystery", "nope", {})],
            [("start", "mystery")],
        )
        record = await execute_workflow(graph, resolver=make_resolver())

        assert record.status == RunStatus.ERROR
        assert "nope" in record.node_executions["mystery"].error

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_node_error(self):
        async def crash(ctx):
            raise KeyError("missing")

        graph = build_graph(
            [("start", "start", {}), ("crash", "crash", {})],
            [("start", "crash")],
        )
        record = await execute_workflow(graph, resolver=make_resolver(crash=crash))

        assert record.status == RunStatus.ERROR
        assert record.node_executions["crash"].status == NodeStatus.ERROR
        assert "missing" in record.node_executions["crash"].error

    @pytest.mark.asyncio
    async def test_env_merged_over_variables(self):
        async def read_env(ctx):
            return dict(ctx.env)

        graph = WorkflowGraph.from_dict({
            "starterId": "start",
            "variables": {"A": "default", "B": "kept"},
            "nodes": [{"id": "start", "type": "env"}],
        })
        record = await execute_workflow(
            graph, env={"A": "override"}, resolver=MappingResolver({"env": read_env})
        )

        assert record.node_executions["start"].outputs == {"A": "override", "B": "kept"}


# ============================================================
# Output Semantics Tests
# ============================================================

class TestOutputs:
    """Tests for how node results are published."""

    @pytest.mark.asyncio
    async def test_return_value_merges_after_explicit_writes(self):
        async def writer(ctx):
            ctx.set_output("a", 1)
            return {"a": 2, "b": 3}

        graph = build_graph([("start", "writer", {})], [])
        record = await execute_workflow(graph, resolver=MappingResolver({"writer": writer}))

        assert record.node_executions["start"].outputs == {"a": 2, "b": 3}

    @pytest.mark.asyncio
    async def test_non_mapping_result_stored_as_value(self):
        async def answer(ctx):
            return 42

        graph = build_graph([("start", "answer", {})], [])
        record = await execute_workflow(graph, resolver=MappingResolver({"answer": answer}))

        assert record.node_executions["start"].outputs == {"value": 42}

    @pytest.mark.asyncio
    async def test_none_result_publishes_nothing(self):
        async def quiet(ctx):
            ctx.set_output("kept", True)

        graph = build_graph([("start", "quiet", {})], [])
        record = await execute_workflow(graph, resolver=MappingResolver({"quiet": quiet}))

        assert record.node_executions["start"].outputs == {"kept": True}

    @pytest.mark.asyncio
    async def test_reads_of_finished_node_are_stable(self):
        """Test that repeated reads of a finished node agree."""
        reads: List[Any] = []

        async def producer(ctx):
            return {"items": [1, 2, 3]}

        async def consumer(ctx):
            first = ctx.get_output("start", "items")
            first.append(99)
            reads.append(first)
            reads.append(ctx.get_output("start", "items"))
            reads.append(ctx.get_output("start", "items"))

        graph = build_graph(
            [("start", "producer", {}), ("reader", "consumer", {})],
            [("start", "reader")],
        )
        resolver = MappingResolver({"producer": producer, "consumer": consumer})
        record = await execute_workflow(graph, resolver=resolver)

        assert record.status == RunStatus.SUCCESS
        assert reads[1] == reads[2] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_configuration_is_read_only(self):
        async def mutate(ctx):
            ctx.configuration["x"] = 2

        graph = build_graph([("start", "mutate", {"x": 1})], [])
        record = await execute_workflow(graph, resolver=MappingResolver({"mutate": mutate}))

        assert record.status == RunStatus.ERROR
        assert graph.node_by_id("start").configuration == {"x": 1}

    @pytest.mark.asyncio
    async def test_sync_behavior(self):
        """Test that plain functions run off the event loop."""
        def compute(ctx):
            ctx.log("computing")
            ctx.set_output("partial", True)
            return {"total": sum(range(10))}

        graph = build_graph([("start", "compute", {})], [])
        record = await execute_workflow(graph, resolver=MappingResolver({"compute": compute}))

        assert record.status == RunStatus.SUCCESS
        assert record.node_executions["start"].outputs == {"partial": True, "total": 45}
        assert any(e.message == "computing" for e in record.logs)

    @pytest.mark.asyncio
    async def test_handle_snapshot_is_a_copy(self):
        graph = build_graph([("start", "start", {})], [])
        handle, task = start_workflow(graph, resolver=make_resolver())
        await task

        snapshot = handle.snapshot()
        assert snapshot == {"start": {"started": True}}

        snapshot["start"]["started"] = False
        assert handle.snapshot() == {"start": {"started": True}}


# ============================================================
# Cancellation and Timeout Tests
# ============================================================

class TestRunCancellation:
    """Tests for stopping runs."""

    @pytest.mark.asyncio
    async def test_cancel_during_network_call(self):
        """Test cancelling a run while a node is waiting on the network."""
        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(2)
            return httpx.Response(200, json={"late": True})

        async def fetch(ctx):
            response = await ctx.network.get("https://api.example.com/slow")
            return {"status": response.status_code}

        client = httpx.AsyncClient(transport=httpx.MockTransport(slow_handler))
        graph = build_graph(
            [("start", "start", {}), ("fetch", "fetch", {}), ("after", "sleep", {})],
            [("start", "fetch"), ("fetch", "after")],
        )
        handle, task = start_workflow(
            graph, resolver=make_resolver(fetch=fetch), http_client=client
        )

        await wait_for_status(handle, "fetch", NodeStatus.RUNNING)
        assert handle.cancel() is True
        started = time.perf_counter()
        record = await task
        await client.aclose()

        assert time.perf_counter() - started < 1
        assert record.status == RunStatus.CANCELLED
        assert record.node_executions["start"].status == NodeStatus.SUCCESS
        assert record.node_executions["start"].outputs == {"started": True}
        assert record.node_executions["fetch"].status == NodeStatus.CANCELLED
        assert record.node_executions["after"].status == NodeStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self):
        graph = build_graph([("start", "start", {})], [])
        handle, task = start_workflow(graph, resolver=make_resolver())
        record = await task

        handle.cancel()
        assert record.status == RunStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_node_timeout_is_error(self):
        graph = WorkflowGraph.from_dict({
            "starterId": "start",
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "slow", "type": "sleep", "data": {"delay": 2}, "timeout": 0.05},
            ],
            "edges": [{"source": "start", "target": "slow"}],
        })
        record = await execute_workflow(graph, resolver=make_resolver())

        assert record.status == RunStatus.ERROR
        assert record.node_executions["slow"].status == NodeStatus.ERROR
        assert "timed out" in record.node_executions["slow"].error

    @pytest.mark.asyncio
    async def test_run_timeout_cancels(self):
        graph = build_graph(
            [("start", "start", {}), ("slow", "sleep", {"delay": 2})],
            [("start", "slow")],
        )
        record = await execute_workflow(graph, resolver=make_resolver(), run_timeout=0.05)

        assert record.status == RunStatus.CANCELLED
        assert record.node_executions["slow"].status == NodeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_task_cancellation_finalizes_record(self):
        """Test that cancelling the run task still leaves a final record."""
        graph = build_graph(
            [("start", "start", {}), ("slow", "sleep", {"delay": 2})],
            [("start", "slow")],
        )
        handle, task = start_workflow(graph, resolver=make_resolver())
        await wait_for_status(handle, "slow", NodeStatus.RUNNING)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert handle.record.status == RunStatus.CANCELLED
        assert handle.record.node_executions["slow"].status == NodeStatus.CANCELLED


# ============================================================
# Observer Tests
# ============================================================

class TestObservers:
    """Tests for live log and node status notifications."""

    @pytest.mark.asyncio
    async def test_callbacks_receive_events(self):
        entries: List[ExecutionLogEntry] = []
        updates: List[Tuple[str, NodeStatus]] = []

        graph = build_graph(
            [("start", "start", {}), ("a", "sleep", {})],
            [("start", "a")],
        )
        _, task = start_workflow(
            graph,
            resolver=make_resolver(),
            on_log=entries.append,
            on_node_update=lambda r: updates.append((r.node_id, r.status)),
        )
        record = await task

        assert [e.id for e in entries] == [e.id for e in record.logs]
        assert updates == [
            ("start", NodeStatus.RUNNING),
            ("start", NodeStatus.SUCCESS),
            ("a", NodeStatus.RUNNING),
            ("a", NodeStatus.SUCCESS),
        ]

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_run(self):
        def broken(entry):
            raise RuntimeError("observer failure")

        graph = build_graph([("start", "start", {})], [])
        _, task = start_workflow(graph, resolver=make_resolver(), on_log=broken)
        record = await task

        assert record.status == RunStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_async_observer(self):
        received: List[str] = []

        async def on_log(entry):
            await asyncio.sleep(0)
            received.append(entry.message)

        graph = build_graph([("start", "start", {})], [])
        _, task = start_workflow(graph, resolver=make_resolver(), on_log=on_log)
        record = await task

        assert received == [e.message for e in record.logs]

    @pytest.mark.asyncio
    async def test_observer_gets_snapshots(self):
        snapshots: List[NodeExecutionRecord] = []

        graph = build_graph([("start", "start", {})], [])
        _, task = start_workflow(graph, resolver=make_resolver(), on_node_update=snapshots.append)
        record = await task

        assert snapshots[0].status == NodeStatus.RUNNING
        assert snapshots[0] is not record.node_executions["start"]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_notifications(self):
        class Collector:
            def __init__(self):
                self.events: List[str] = []

            def on_log_entry(self, entry):
                self.events.append(entry.message)

            def on_node_status_change(self, record):
                self.events.append(record.status.value)

        kept, dropped = Collector(), Collector()
        graph = build_graph([("start", "start", {})], [])
        handle, task = start_workflow(
            graph, resolver=make_resolver(), observers=[kept, dropped]
        )
        handle.unsubscribe(dropped)
        await task

        assert kept.events
        assert dropped.events == []


# ============================================================
# Shared HTTP Client Tests
# ============================================================

class TestSharedClient:
    """Tests for the HTTP client shared by runs."""

    @pytest.mark.asyncio
    async def test_runs_reuse_one_client(self, monkeypatch):
        await close_shared_client()
        created: List[httpx.AsyncClient] = []

        class CountingClient(httpx.AsyncClient):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                created.append(self)

        monkeypatch.setattr(httpx, "AsyncClient", CountingClient)

        graph = build_graph([("start", "start", {})], [])
        for _ in range(3):
            record = await execute_workflow(graph, resolver=make_resolver())
            assert record.status == RunStatus.SUCCESS

        assert len(created) == 1
        assert get_shared_client() is created[0]
        assert not created[0].is_closed

        await close_shared_client()
        assert created[0].is_closed

    @pytest.mark.asyncio
    async def test_runs_do_not_stall_event_loop(self):
        """Test that starting runs never blocks other work on the loop."""
        get_shared_client()
        gaps: List[float] = []
        stop = asyncio.Event()

        async def ticker():
            last = time.perf_counter()
            while not stop.is_set():
                await asyncio.sleep(0.005)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        ticking = asyncio.create_task(ticker())
        await asyncio.sleep(0.02)

        graph = build_graph([("start", "start", {})], [])
        records = await asyncio.gather(*[
            execute_workflow(graph, resolver=make_resolver()) for _ in range(3)
        ])
        await asyncio.sleep(0.02)
        stop.set()
        await ticking
        await close_shared_client()

        assert all(r.status == RunStatus.SUCCESS for r in records)
        assert max(gaps) < 0.03


# ============================================================
# Behavior Adapter Tests
# ============================================================

class TestFunctionBehavior:
    """Tests for FunctionBehavior."""

    def test_requires_callable(self):
        with pytest.raises(ValueError, match="must be callable"):
            FunctionBehavior("not a function")

    def test_detects_async(self):
        assert FunctionBehavior(start_block).is_async is True
        assert FunctionBehavior(lambda ctx: None).is_async is False

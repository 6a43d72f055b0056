"""
Node Execution Contract.

Node behaviors receive a ``NodeContext`` when they run. The context is their
only way to log, read other nodes' outputs, publish their own outputs, reach
the network and observe cancellation.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Union, runtime_checkable
from types import MappingProxyType
from copy import deepcopy
import asyncio
import functools
import inspect

from blockflow.engine.cancellation import CancellationToken
from blockflow.engine.network import NetworkCapability
from blockflow.engine.records import LogLevel
from blockflow.engine.state import ALL_OUTPUTS, OutputRegistry


@runtime_checkable
class NodeBehavior(Protocol):
    """Executable behavior of a block type."""

    async def run(self, context: "NodeContext") -> Any:
        ...


@runtime_checkable
class NodeTypeResolver(Protocol):
    """Maps a node type name to its behavior (``None`` when unknown)."""

    def resolve(self, node_type: str) -> Optional[NodeBehavior]:
        ...


LogSink = Callable[[str, LogLevel, Optional[str]], Any]


class NodeContext:
    """
    Capabilities handed to one node for one execution.

    Attributes:
        workflow_id: Id of the running workflow
        node_id: Id of the node being executed
        configuration: Read-only copy of the node's configuration
        env: Read-only environment/variables supplied at run start
        network: Time-bounded network capability tied to ``cancellation``
        cancellation: Token combining the node timeout and run cancellation
    """

    def __init__(
        self,
        workflow_id: str,
        node_id: str,
        configuration: Mapping[str, Any],
        env: Mapping[str, str],
        network: NetworkCapability,
        cancellation: CancellationToken,
        registry: OutputRegistry,
        log_sink: LogSink,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.workflow_id = workflow_id
        self.node_id = node_id
        self.configuration = MappingProxyType(deepcopy(dict(configuration)))
        self.env = MappingProxyType(dict(env))
        self.network = network
        self.cancellation = cancellation
        self._registry = registry
        self._log_sink = log_sink
        self._loop = loop or asyncio.get_running_loop()

    def log(self, message: Any, level: Union[LogLevel, str] = LogLevel.INFO) -> None:
        """Append a log entry tagged with this node's id."""
        level = LogLevel(level)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        # Sync behaviors run in worker threads; hop back onto the engine loop
        if running is self._loop:
            self._log_sink(str(message), level, self.node_id)
        else:
            self._loop.call_soon_threadsafe(self._log_sink, str(message), level, self.node_id)

    def get_output(self, node_id: str, key: Optional[str] = None) -> Any:
        """
        Read published outputs.

        ``get_output(ALL_OUTPUTS)`` returns a snapshot of every node's slot.
        """
        return self._registry.get(node_id, key)

    def get_all_outputs(self) -> Dict[str, Dict[str, Any]]:
        return self._registry.get(ALL_OUTPUTS)

    def set_output(self, key: str, value: Any) -> None:
        """Write into this node's own slot; visible to later reads immediately."""
        self._registry.write(self.node_id, key, value)

    async def sleep(self, seconds: float) -> None:
        """Cancellation-aware sleep."""
        await self.cancellation.sleep(seconds)

    def __repr__(self) -> str:
        return f"NodeContext(workflow='{self.workflow_id}', node='{self.node_id}')"


class FunctionBehavior:
    """
    Adapts a plain function ``handler(context)`` into a ``NodeBehavior``.

    Sync handlers run in the default executor so they never block the loop.
    """

    def __init__(self, handler: Callable[[NodeContext], Any], name: Optional[str] = None):
        if not callable(handler):
            raise ValueError("Behavior handler must be callable")
        self.handler = handler
        self.name = name or getattr(handler, "__name__", repr(handler))

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.handler)

    async def run(self, context: NodeContext) -> Any:
        if self.is_async:
            return await self.handler(context)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.handler, context))

    def __repr__(self) -> str:
        return f"FunctionBehavior({self.name})"


class MappingResolver:
    """Resolver over a plain ``{type: behavior_or_function}`` mapping."""

    def __init__(self, behaviors: Optional[Dict[str, Any]] = None):
        self._behaviors: Dict[str, NodeBehavior] = {}
        for node_type, behavior in (behaviors or {}).items():
            self.add(node_type, behavior)

    def add(self, node_type: str, behavior: Any) -> None:
        if not isinstance(behavior, NodeBehavior):
            behavior = FunctionBehavior(behavior, name=node_type)
        self._behaviors[node_type] = behavior

    def resolve(self, node_type: str) -> Optional[NodeBehavior]:
        return self._behaviors.get(node_type)

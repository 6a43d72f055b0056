"""
Workflow Graph Model.

A workflow is an immutable description of typed nodes, the directed edges
between them, and the starter node the run begins from. The model validates
its own structure before any run is created.
"""

from typing import Any, Dict, List, Optional, Set
from pydantic import BaseModel, Field, PrivateAttr, field_validator
import uuid

from blockflow.engine.errors import (
    CycleDetectedError,
    DanglingEdgeError,
    MissingStarterError,
)


class Node(BaseModel):
    """
    A node in the workflow graph.

    Attributes:
        id: Unique identifier within the workflow
        type: Block type name, resolved to a behavior at run time
        configuration: Opaque key/value data handed to the behavior
        timeout: Optional per-node time limit in seconds
    """

    id: str
    type: str
    configuration: Dict[str, Any] = Field(default_factory=dict, alias="data")
    timeout: Optional[float] = Field(None, gt=0)

    class Config:
        frozen = True
        populate_by_name = True


class Edge(BaseModel):
    """A directed dependency from ``source`` to ``target``.

    Handles and label are routing hints for editors; the engine ignores them.
    """

    id: str = Field(default_factory=lambda: f"edge-{uuid.uuid4().hex[:8]}")
    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target_handle: Optional[str] = Field(None, alias="targetHandle")
    label: Optional[str] = None

    class Config:
        frozen = True
        populate_by_name = True


class WorkflowGraph(BaseModel):
    """
    A workflow graph consisting of nodes, edges and a starter node.

    Accepts both snake_case fields and the camelCase keys used by saved
    workflow documents (``starterId``, node ``data``, ``sourceHandle``).
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Unnamed Workflow"
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    starter_id: str = Field(..., alias="starterId")
    variables: Dict[str, str] = Field(default_factory=dict)

    _nodes_by_id: Dict[str, Node] = PrivateAttr(default_factory=dict)
    _outgoing: Dict[str, List[Edge]] = PrivateAttr(default_factory=dict)
    _incoming: Dict[str, List[Edge]] = PrivateAttr(default_factory=dict)

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("nodes")
    @classmethod
    def _unique_node_ids(cls, nodes: List[Node]) -> List[Node]:
        seen: Set[str] = set()
        for node in nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id '{node.id}'")
            seen.add(node.id)
        return nodes

    def model_post_init(self, __context: Any) -> None:
        self._nodes_by_id = {node.id: node for node in self.nodes}
        for edge in self.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)
            self._incoming.setdefault(edge.target, []).append(edge)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowGraph":
        """Parse a workflow document (as saved by the editor)."""
        return cls.model_validate(data)

    # ------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------

    def node_by_id(self, node_id: str) -> Optional[Node]:
        return self._nodes_by_id.get(node_id)

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return list(self._outgoing.get(node_id, []))

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return list(self._incoming.get(node_id, []))

    def successors(self, node_id: str) -> List[str]:
        """Distinct target ids of a node's outgoing edges, in edge order."""
        targets: List[str] = []
        for edge in self._outgoing.get(node_id, []):
            if edge.target not in targets:
                targets.append(edge.target)
        return targets

    def reachable_from_starter(self) -> List[str]:
        """Node ids reachable from the starter, in breadth-first order."""
        if self.starter_id not in self._nodes_by_id:
            return []

        reachable = [self.starter_id]
        seen = {self.starter_id}
        index = 0
        while index < len(reachable):
            for target in self.successors(reachable[index]):
                if target not in seen and target in self._nodes_by_id:
                    seen.add(target)
                    reachable.append(target)
            index += 1
        return reachable

    # ------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------

    def validate(self) -> None:
        """
        Validate the graph structure.

        Raises:
            MissingStarterError: No node matches ``starter_id``
            DanglingEdgeError: An edge endpoint is not a node
            CycleDetectedError: A reachable node lies on a cycle
        """
        if self.starter_id not in self._nodes_by_id:
            raise MissingStarterError(self.starter_id)

        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self._nodes_by_id:
                    raise DanglingEdgeError(edge.id, endpoint)

        cycle = self._find_cycle()
        if cycle:
            raise CycleDetectedError(cycle)

    def _find_cycle(self) -> Optional[List[str]]:
        """Depth-first search from the starter; returns the first cycle path."""
        visiting: Set[str] = set()
        done: Set[str] = set()
        path: List[str] = []
        # Explicit stack of (node, successor iterator) avoids recursion limits
        stack = [(self.starter_id, iter(self.successors(self.starter_id)))]
        visiting.add(self.starter_id)
        path.append(self.starter_id)

        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                path.pop()
                visiting.discard(node_id)
                done.add(node_id)
                continue
            if child in visiting:
                return path[path.index(child):] + [child]
            if child in done:
                continue
            visiting.add(child)
            path.append(child)
            stack.append((child, iter(self.successors(child))))

        return None

    # ------------------------------------------------------------
    # Export
    # ------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph using the saved-document key names."""
        return self.model_dump(by_alias=True)

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]

        for node in self.nodes:
            label = f"{node.id} ({node.type})"
            if node.id == self.starter_id:
                lines.append(f'    {node.id}(["{label}"])')
            else:
                lines.append(f'    {node.id}["{label}"]')

        for edge in self.edges:
            if edge.label:
                lines.append(f"    {edge.source} -->|{edge.label}| {edge.target}")
            else:
                lines.append(f"    {edge.source} --> {edge.target}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"WorkflowGraph(name='{self.name}', nodes={[n.id for n in self.nodes]}, "
            f"starter='{self.starter_id}')"
        )

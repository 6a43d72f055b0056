"""
Output Registry for the Workflow Engine.

Each run keeps one output slot per node. A slot is written only by its own
node (through that node's context) and becomes read-only once the node has
completed. Reads hand out deep copies, so the registry can never be mutated
from outside and repeated reads of a completed node return equal values.
"""

from typing import Any, Dict, Optional, Set
from copy import deepcopy
import threading


# Wildcard node id for the "dump all outputs" query
ALL_OUTPUTS = "*"

# Key under which a non-mapping node result is published
RESULT_VALUE_KEY = "value"


class SealedSlotError(RuntimeError):
    """Raised when writing to the slot of a node that already completed."""


class OutputRegistry:
    """
    Per-run mapping of ``node_id -> {key: value}``.

    Only the scheduler holds a reference to the registry; node behaviors
    reach it through the accessors bound into their ``NodeContext``.
    """

    def __init__(self):
        self._slots: Dict[str, Dict[str, Any]] = {}
        self._sealed: Set[str] = set()
        self._lock = threading.Lock()

    def write(self, node_id: str, key: str, value: Any) -> None:
        """Write one output into a node's slot (last write wins)."""
        with self._lock:
            if node_id in self._sealed:
                raise SealedSlotError(
                    f"Outputs of node '{node_id}' are sealed after completion"
                )
            self._slots.setdefault(node_id, {})[key] = deepcopy(value)

    def merge(self, node_id: str, values: Dict[str, Any]) -> None:
        """Merge a mapping into a node's slot; incoming keys win."""
        with self._lock:
            if node_id in self._sealed:
                raise SealedSlotError(
                    f"Outputs of node '{node_id}' are sealed after completion"
                )
            slot = self._slots.setdefault(node_id, {})
            for key, value in values.items():
                slot[key] = deepcopy(value)

    def seal(self, node_id: str) -> None:
        """Freeze a node's slot once the node has completed."""
        with self._lock:
            self._sealed.add(node_id)

    def is_sealed(self, node_id: str) -> bool:
        return node_id in self._sealed

    def get(self, node_id: str, key: Optional[str] = None) -> Any:
        """
        Read from the registry.

        Args:
            node_id: Producer node id, or ``ALL_OUTPUTS`` for every slot
            key: Optional output key within the slot

        Returns:
            A copy of the value, the whole slot, or a snapshot of the
            registry; ``None`` when nothing was published.
        """
        if node_id == ALL_OUTPUTS:
            return self.snapshot()

        with self._lock:
            slot = self._slots.get(node_id)
            if slot is None:
                return None
            if key is None:
                return deepcopy(slot)
            return deepcopy(slot.get(key))

    def slot(self, node_id: str) -> Dict[str, Any]:
        """Copy of a node's slot (empty dict when nothing was written)."""
        with self._lock:
            return deepcopy(self._slots.get(node_id, {}))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Deep copy of the whole registry."""
        with self._lock:
            return deepcopy(self._slots)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

"""
Block Registry.

The registry maps block type names to their behaviors and metadata. It is
the default node type resolver handed to the scheduler: blocks are
registered statically at import time and looked up by type when a node
starts.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
import logging

from blockflow.engine.node import FunctionBehavior, NodeBehavior


logger = logging.getLogger(__name__)


@dataclass
class Block:
    """
    A registered block type.

    Attributes:
        type: Type name referenced by workflow nodes
        name: Human-readable name
        behavior: Executable behavior
        description: What the block does
        category: Palette category (blocks, control, io, ...)
        inputs: Configuration keys the block reads, with descriptions
        outputs: Output keys the block publishes, with descriptions
    """
    type: str
    name: str
    behavior: NodeBehavior
    description: str = ""
    category: str = "blocks"
    inputs: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize block metadata."""
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "inputs": self.inputs,
            "outputs": self.outputs,
        }


class BlockRegistry:
    """
    Registry of block types; implements ``NodeTypeResolver``.

    Usage:
        registry = BlockRegistry()

        @registry.register("echo", outputs={"text": "Echoed text"})
        async def echo(ctx):
            return {"text": ctx.configuration.get("text", "")}

        behavior = registry.resolve("echo")
    """

    def __init__(self):
        self._blocks: Dict[str, Block] = {}

    def register(
        self,
        block_type: Optional[str] = None,
        name: str = "",
        description: str = "",
        category: str = "blocks",
        inputs: Optional[Dict[str, str]] = None,
        outputs: Optional[Dict[str, str]] = None,
    ) -> Callable:
        """
        Decorator to register a function ``handler(ctx)`` as a block.

        Args:
            block_type: Type name (defaults to function name)
            name: Display name (defaults to the type name)
            description: Block description (defaults to docstring)
            category: Palette category
            inputs: Configuration key descriptions
            outputs: Output key descriptions

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            self.add(
                func,
                block_type=block_type,
                name=name,
                description=description,
                category=category,
                inputs=inputs,
                outputs=outputs,
            )
            return func

        return decorator

    def add(
        self,
        behavior: Any,
        block_type: Optional[str] = None,
        name: str = "",
        description: str = "",
        category: str = "blocks",
        inputs: Optional[Dict[str, str]] = None,
        outputs: Optional[Dict[str, str]] = None,
    ) -> Block:
        """Register a behavior object or handler function (non-decorator version)."""
        block_type = block_type or getattr(behavior, "__name__", None)
        if not block_type:
            raise ValueError("Block type name is required")

        doc = description or getattr(behavior, "__doc__", None) or ""
        if not isinstance(behavior, NodeBehavior):
            behavior = FunctionBehavior(behavior, name=block_type)

        block = Block(
            type=block_type,
            name=name or block_type.replace("_", " ").title(),
            behavior=behavior,
            description=doc.strip(),
            category=category,
            inputs=inputs or {},
            outputs=outputs or {},
        )
        if block_type in self._blocks:
            logger.warning(f"Replacing registered block: {block_type}")
        self._blocks[block_type] = block
        logger.debug(f"Registered block: {block_type}")
        return block

    def resolve(self, node_type: str) -> Optional[NodeBehavior]:
        """Resolve a node type to its behavior."""
        block = self._blocks.get(node_type)
        return block.behavior if block else None

    def get(self, block_type: str) -> Optional[Block]:
        return self._blocks.get(block_type)

    def remove(self, block_type: str) -> bool:
        """Remove a block from the registry."""
        if block_type in self._blocks:
            del self._blocks[block_type]
            return True
        return False

    def list_blocks(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        """List registered blocks, optionally filtered by category."""
        return [
            block.to_dict() for block in self._blocks.values()
            if category is None or block.category == category
        ]

    def has(self, block_type: str) -> bool:
        return block_type in self._blocks

    def __contains__(self, block_type: str) -> bool:
        return self.has(block_type)

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self):
        return iter(self._blocks.values())


# Global block registry instance
block_registry = BlockRegistry()


def register_block(
    block_type: Optional[str] = None,
    name: str = "",
    description: str = "",
    category: str = "blocks",
    inputs: Optional[Dict[str, str]] = None,
    outputs: Optional[Dict[str, str]] = None,
) -> Callable:
    """
    Convenience decorator to register a block in the global registry.

    Usage:
        @register_block("starter", category="io")
        async def starter(ctx):
            return {"trigger": True}
    """
    return block_registry.register(block_type, name, description, category, inputs, outputs)

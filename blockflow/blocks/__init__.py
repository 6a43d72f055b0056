"""
Blocks package - Block registry and built-in blocks.
"""

from blockflow.blocks.registry import Block, BlockRegistry, block_registry, register_block

# Import builtin blocks to register them
import blockflow.blocks.builtin  # noqa: F401

__all__ = [
    "Block",
    "BlockRegistry",
    "block_registry",
    "register_block",
]

"""
Blocks API Routes.

Endpoints for listing the block types workflows can use.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException

from blockflow.api.schemas import BlockInfo, BlockListResponse, ErrorResponse
from blockflow.blocks import block_registry


router = APIRouter(prefix="/blocks", tags=["Blocks"])


@router.get(
    "/",
    response_model=BlockListResponse,
)
async def list_blocks(category: Optional[str] = None) -> BlockListResponse:
    """
    List all registered block types.

    Every node's `type` must name one of these blocks.
    """
    blocks = [BlockInfo(**b) for b in block_registry.list_blocks(category)]
    return BlockListResponse(blocks=blocks, total=len(blocks))


@router.get(
    "/{block_type}",
    response_model=BlockInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_block(block_type: str) -> BlockInfo:
    """Get information about a specific block type."""
    block = block_registry.get(block_type)
    if not block:
        raise HTTPException(
            status_code=404,
            detail=f"Block type '{block_type}' not found"
        )
    return BlockInfo(**block.to_dict())

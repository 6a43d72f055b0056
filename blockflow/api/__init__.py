"""
API package - FastAPI routes and schemas.
"""

from blockflow.api.routes import blocks, websocket, workflows

__all__ = ["blocks", "websocket", "workflows"]

"""
Blockflow - FastAPI Application Entry Point.

Stores block-based workflows and executes them as concurrent DAGs.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from blockflow.config import settings
from blockflow.engine.network import close_shared_client, get_shared_client
from blockflow.api.routes import blocks, websocket, workflows
from blockflow.storage.memory import run_storage, workflow_storage
from blockflow.workflows.demo import DEMO_WORKFLOW_ID, register_demo_workflow


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # One HTTP client for every run, built before requests arrive
    get_shared_client()
    await register_demo_workflow()

    yield

    # Ask in-flight runs to stop before the loop goes away
    for run in await run_storage.list_all():
        if not run.done:
            run.handle.cancel()
    await close_shared_client()
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Execution API

Run block-based workflows as directed acyclic graphs.

### Features
- **Blocks**: starter, HTTP request, condition, function and response
- **Concurrency**: independent branches run at the same time
- **Failure policy**: a failing node stops its descendants (and, by default, the run)
- **Cancellation**: cooperative cancellation and time limits per node and per run
- **Real-time Updates**: WebSocket streaming of log entries and node status

### Quick Start
1. List available blocks: `GET /blocks`
2. Create a workflow: `POST /workflows`
3. Run the workflow: `POST /workflows/run`
4. Check a run: `GET /workflows/runs/{run_id}`

### Demo Workflow
A pre-registered diamond workflow is available with ID: `demo-diamond`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(workflows.router)
app.include_router(blocks.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Concurrent execution engine for block-based workflows",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "workflows": "/workflows",
            "runs": "/workflows/runs",
            "blocks": "/blocks",
            "websocket_run": "/ws/run/{workflow_id}",
            "websocket_subscribe": "/ws/subscribe/{run_id}",
        },
        "demo_workflow": DEMO_WORKFLOW_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "workflows_count": len(workflow_storage),
        "runs_count": len(run_storage),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "status_code": 500,
        },
    )

"""
Core API backend for Courier.

This module exposes the command engine over HTTP.  It is stateless: a clarification round-trip is
two independent ``POST /commands`` calls, the second carrying the user's pick in
``app_context.clarification_response``.

Endpoints:
- **GET /health**    - liveness probe for health checks.
- **GET /tools**     - registered tools and their parameter schemas.
- **POST /commands** - run one command: {"command": "...", "app_context": {...}}
"""

import asyncio
import logging
from functools import lru_cache
from typing import Annotated

from fastapi import (
    Depends,
    FastAPI,
)
from fastapi.middleware.cors import CORSMiddleware

from courier.agent.engine import (
    CommandEngine,
    create_engine,
)
from courier.api.models import (
    CommandRequest,
    CommandResponse,
    HealthResponse,
    ToolListResponse,
)
from courier.common import (
    AnsiColors,
    colored_print,
)
from courier.config import settings
from courier.tools import get_tool_schemas

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Courier API",
    version="0.1.0",
    description="Natural-language command engine for messaging",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[f"http://localhost:{settings.API_PORT}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_engine() -> CommandEngine:
    """Build the engine on first use; one per process."""
    logger.info("Creating command engine (planner=%s)", settings.PLANNER)
    return create_engine(settings)


EngineDep = Annotated[CommandEngine, Depends(get_engine)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", response_model=HealthResponse, summary="Health check")
async def health(engine: EngineDep) -> HealthResponse:
    """Return a simple liveness payload."""
    return HealthResponse(planner=type(engine.planner).__name__, tools=len(engine.registry))


@app.get("/tools", response_model=ToolListResponse, summary="List registered tools")
async def list_tools(engine: EngineDep) -> ToolListResponse:
    """Return every registered tool with its parameters."""
    return ToolListResponse.from_schemas(dict(get_tool_schemas(engine.registry)))


@app.post("/commands", response_model=CommandResponse, summary="Run a command")
async def run_command(req: CommandRequest, engine: EngineDep) -> CommandResponse:
    """Plan and execute one command, or resume one after a clarification."""
    return await engine.invoke(req)


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the Courier API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in dev docker-compose).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path of tests
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Courier API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )

    # Seeded messages are searchable from the first request
    indexed = asyncio.run(get_engine().index_existing_messages())
    logger.debug("Indexed %d seed messages", indexed)

    colored_print(f"Courier API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "courier.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m courier.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)

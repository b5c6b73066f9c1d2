"""FastAPI application entry point for the generator backend.

This module initializes the FastAPI application with its middleware and
router, and owns the lifecycle of every collaborator (thread store, event
bus, assistant registry, LLM client, run manager).

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agents.templates import offline_reply
from agents.utils import LLMClient, MockLLMClient
from api.routes import router, set_run_manager
from assistants import create_default_registry
from config import Settings, configure_logging, settings
from events import EventBus
from run_manager import RunManager
from store import ThreadStore

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


def build_llm_client(config: Settings) -> LLMClient:
    """LiteLLM-backed client, or the offline responder when ``use_mock_llm`` is set."""
    if config.use_mock_llm:
        return MockLLMClient(responder=offline_reply, default_model=config.default_model)
    return LLMClient(
        default_model=config.default_model,
        request_timeout=float(config.llm_request_timeout_seconds),
    )


def build_run_manager(config: Settings) -> RunManager:
    """Wire a RunManager and its collaborators from settings."""
    return RunManager(
        ThreadStore(),
        EventBus(),
        create_default_registry(),
        build_llm_client(config),
        default_assistant_id=config.default_assistant_id,
        model=config.default_model,
        requirements_temperature=config.requirements_temperature,
        code_temperature=config.code_temperature,
        scaffold_temperature=config.scaffold_temperature,
        recursion_limit=config.graph_recursion_limit,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        use_mock_llm=settings.use_mock_llm,
        default_assistant_id=settings.default_assistant_id,
    )

    run_manager = build_run_manager(settings)
    set_run_manager(run_manager)
    app.state.run_manager = run_manager

    logger.info("application_started")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await app.state.run_manager.shutdown()
    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="V0 Generator Backend",
    description="Turns natural-language UI requests into previewable components "
    "through a supervised, human-in-the-loop generation pipeline.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["generator"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "V0 Generator Backend",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )

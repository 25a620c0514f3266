"""
FastAPI application for the ad-content generation pipeline.

Provides HTTP API for script, speech and lip-sync generation with
WebSocket progress updates.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from talkar.api import cache_routes, performance_routes, routes, websocket
from talkar.config import get_settings
from talkar.logging_config import setup_logging
from talkar.services.pipeline import PipelineOrchestrator

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the orchestrator with its stores and provider chains once,
    starts the cache sweeper and releases everything on shutdown.
    An orchestrator already placed on app.state is used as is.
    """
    logger.info("Starting TalkAR Ad Pipeline API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Config directory: {settings.config_dir}")
    logger.info(f"Audio directory: {settings.audio_dir}")

    http_client = None
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        # No global timeout - each provider request sets its own
        http_client = httpx.AsyncClient(timeout=None)
        orchestrator = PipelineOrchestrator.from_settings(settings, http_client)
        app.state.orchestrator = orchestrator

    orchestrator.cache.start_sweeper(settings.cache_sweep_interval)

    yield

    logger.info("Shutting down TalkAR Ad Pipeline API")
    await orchestrator.cache.stop_sweeper()
    await orchestrator.close()
    if http_client is not None:
        await http_client.aclose()


app = FastAPI(
    title="TalkAR Ad Pipeline API",
    description="API for AI-generated product advertisements: script, voice and lip-sync video",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for the AR client and dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)
app.include_router(cache_routes.router)
app.include_router(performance_routes.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status
    """
    return {"status": "ok"}


@app.get("/health/providers")
async def providers_health(request: Request) -> dict:
    """
    Provider chains per stage.

    Availability is derived from configured credentials, not probed.

    Returns:
        Stage -> ordered provider descriptors
    """
    orchestrator: PipelineOrchestrator = request.app.state.orchestrator
    return {
        stage: [d.model_dump() for d in descriptors]
        for stage, descriptors in orchestrator.provider_descriptors().items()
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "talkar.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from orchestrator.config import get_settings
from orchestrator.core.dependencies import get_dispatcher, reset_dependencies
from orchestrator.core.state_manager import (StateManager, init_state_manager,
                                             state_manager)
from orchestrator.utils.pipeline_parser import load_pipelines_file
from orchestrator.api import builds, health
from contextlib import asynccontextmanager
import logging

settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


def load_pipelines(state: StateManager, path: str) -> None:
    """Register every pipeline defined in a YAML file"""
    definitions = load_pipelines_file(path)
    for definition in definitions:
        state.add_pipeline(definition.pipeline, definition.jobs)
    logger.info(f"Loaded {len(definitions)} pipelines from {path}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    if settings.database_url or settings.redis_url:
        logger.info(
            f"Initializing state manager with backends (DB: {bool(settings.database_url)}, Redis: {bool(settings.redis_url)})"
        )
        await init_state_manager(database_url=settings.database_url,
                                 redis_url=settings.redis_url)
    else:
        logger.info("Running with in-memory state only")

    state = state_manager()
    if settings.pipelines_file:
        load_pipelines(state, settings.pipelines_file)

    # Rebuild singletons against the initialized state
    reset_dependencies()
    get_dispatcher()
    logger.info("Orchestrator started")

    yield

    if state.postgres:
        await state.postgres.close()
    if state.redis:
        await state.redis.close()
    logger.info("Orchestrator shutting down")


app = FastAPI(
    title="Pipeline Orchestrator",
    description="Resolves workflow triggers between pipeline jobs",
    version="0.1.0",
    lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router)
app.include_router(builds.router)

if __name__ == "__main__":
    uvicorn.run("orchestrator.main:app", host="0.0.0.0", port=8000, reload=True)

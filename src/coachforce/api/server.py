import os
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coachforce import __version__
from coachforce.api.routes import conversation, health, programs
from coachforce.application.executor import CoachExecutor
from coachforce.application.factory import CoachFactory
from coachforce.logging_config import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI startup/shutdown events."""
    await logger.ainfo("fastapi.startup", message="Coachforce API starting...")
    yield
    await logger.ainfo("fastapi.shutdown", message="Coachforce API shutting down...")
    await app.state.executor.shutdown()


def create_app(executor: Optional[CoachExecutor] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Without an explicit executor, one is built from COACHFORCE_CONFIG_DIR
    and COACHFORCE_PROFILE (defaults: ``configs`` / ``dev``).
    """
    load_dotenv()

    app = FastAPI(
        title="Coachforce API",
        description="Streaming coaching conversations and program design",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.executor = executor or CoachExecutor(
        CoachFactory(config_dir=os.getenv("COACHFORCE_CONFIG_DIR", "configs")),
        profile=os.getenv("COACHFORCE_PROFILE", "dev"),
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversation.router, prefix="/api/v1", tags=["conversations"])
    app.include_router(programs.router, prefix="/api/v1", tags=["programs"])
    app.include_router(health.router, tags=["health"])

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    setup_logging(debug=os.getenv("COACHFORCE_DEBUG") == "1", json_output=True)
    uvicorn.run(app, host="0.0.0.0", port=8070)

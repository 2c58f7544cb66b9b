"""
Tutor Relay - FastAPI Application

Realtime voice-tutoring relay between student clients and an AI voice model.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (parent of backend/)
# Must happen before importing modules that use environment variables
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from tutor_relay.api.dependencies import (  # noqa: E402
    cleanup_dependencies,
    get_active_session_count,
    init_dependencies,
)
from tutor_relay.api.routes import classroom_router, voice_router  # noqa: E402
from tutor_relay.config import (  # noqa: E402
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    get_cors_allow_credentials,
    get_cors_origins,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan manager for startup/shutdown events.

    Startup:
    - Initialize singleton dependencies (store, identity, provider connector)

    Shutdown:
    - Close active voice sessions (each logs its usage once)
    """
    logger.info("Starting tutor relay...")

    await init_dependencies()
    logger.info("Dependencies initialized")

    yield

    logger.info("Shutting down tutor relay...")
    await cleanup_dependencies()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Tutor Relay API",
    description="Realtime voice-tutoring relay",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration - loaded from environment with restrictive defaults
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=get_cors_allow_credentials(),
    allow_methods=CORS_ALLOWED_METHODS,
    allow_headers=CORS_ALLOWED_HEADERS,
)

# Register API routers
app.include_router(voice_router)
app.include_router(classroom_router)


@app.get("/health")
async def health() -> dict[str, str | int]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "tutor-relay",
        "version": "0.1.0",
        "active_sessions": get_active_session_count(),
    }

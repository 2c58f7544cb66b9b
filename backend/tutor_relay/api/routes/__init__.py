"""API routes module."""

from .classroom import router as classroom_router
from .voice import router as voice_router

__all__ = ["classroom_router", "voice_router"]

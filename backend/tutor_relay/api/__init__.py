"""API layer - FastAPI routes and dependencies."""

from .dependencies import (
    AdmissionServiceDep,
    IdentityVerifierDep,
    InMemoryRateLimiter,
    SessionStoreDep,
    TokenSignerDep,
    cleanup_dependencies,
    get_admission_service,
    get_identity_verifier,
    get_provider_connector,
    get_session_store,
    get_token_signer,
    init_dependencies,
    rate_limit,
)
from .routes import classroom_router, voice_router

__all__ = [
    # Routes
    "voice_router",
    "classroom_router",
    # Dependencies
    "init_dependencies",
    "cleanup_dependencies",
    "get_admission_service",
    "get_identity_verifier",
    "get_provider_connector",
    "get_session_store",
    "get_token_signer",
    "rate_limit",
    # Type aliases
    "AdmissionServiceDep",
    "IdentityVerifierDep",
    "SessionStoreDep",
    "TokenSignerDep",
    "InMemoryRateLimiter",
]

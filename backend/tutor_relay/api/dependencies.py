"""FastAPI dependency injection module.

Provides singleton instances of services for API routes.
Uses lifespan events for initialization and cleanup.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from supabase import AsyncClient

from tutor_relay.composition import (
    create_admission_service,
    create_identity_verifier,
    create_local_store,
    create_provider_connector,
    create_supabase,
    create_supabase_store,
    create_token_signer,
    create_usage_tracker,
)
from tutor_relay.config import (
    get_identity_backend,
    get_session_settings,
    get_store_backend,
    get_usage_log_path,
)
from tutor_relay.domain.constants import CLOSE_GOING_AWAY
from tutor_relay.domain.services.admission import AdmissionService
from tutor_relay.domain.services.session_controller import CloseReason, SessionController
from tutor_relay.domain.value_objects.settings import SessionSettings
from tutor_relay.infrastructure.usage_tracker import VoiceUsageTracker
from tutor_relay.ports.channels import ProviderConnector
from tutor_relay.ports.identity import IdentityVerifier
from tutor_relay.ports.session_store import SessionStore
from tutor_relay.ports.token_signer import TokenSigner

logger = logging.getLogger(__name__)

VOICE_ENDPOINT = "/ws/voice"
CLASSROOM_TOKEN_ENDPOINT = "/api/classroom/token"


# Singletons stored at module level
_supabase_client: AsyncClient | None = None
_session_store: SessionStore | None = None
_identity_verifier: IdentityVerifier | None = None
_admission_service: AdmissionService | None = None
_provider_connector: ProviderConnector | None = None
_token_signer: TokenSigner | None = None
_session_settings: SessionSettings | None = None
_usage_tracker: VoiceUsageTracker | None = None

# Sessions currently running in this process
_active_sessions: set[SessionController] = set()


async def init_dependencies() -> None:
    """Initialize all singleton dependencies.

    Called during FastAPI lifespan startup.
    """
    global _supabase_client, _session_store, _identity_verifier, _admission_service
    global _provider_connector, _token_signer, _session_settings, _usage_tracker

    store_backend = get_store_backend()
    identity_backend = get_identity_backend()

    if store_backend == "supabase" or identity_backend == "supabase":
        _supabase_client = await create_supabase()

    # Initialize session store and quota gate based on configuration
    if store_backend == "local":
        logger.info("Using LOCAL SQLite store (no Supabase required)")
        local_store = create_local_store()
        _session_store, quota_gate = local_store, local_store
    elif store_backend == "supabase":
        _session_store, quota_gate = create_supabase_store(_supabase_client)
    else:
        raise ValueError(
            f"Invalid STORE_BACKEND: '{store_backend}'. Valid options: 'supabase', 'local'"
        )

    _identity_verifier = create_identity_verifier(identity_backend, _supabase_client)
    _admission_service = create_admission_service(
        identity_verifier=_identity_verifier,
        quota_gate=quota_gate,
        session_store=_session_store,
        allow_request=lambda client_id: _rate_limiter.check(VOICE_ENDPOINT, client_id),
    )

    _provider_connector = create_provider_connector()
    _token_signer = create_token_signer()
    _session_settings = get_session_settings()
    _usage_tracker = create_usage_tracker(_session_settings, get_usage_log_path())

    logger.info(
        f"Relay ready (store={store_backend}, identity={identity_backend}, "
        f"max_session={_session_settings.max_session_seconds}s)"
    )


async def cleanup_dependencies() -> None:
    """Cleanup dependencies on shutdown.

    Called during FastAPI lifespan shutdown.
    Closes active sessions so each one logs its usage.
    """
    global _supabase_client

    if _active_sessions:
        logger.info(f"Closing {len(_active_sessions)} active session(s)")
        await asyncio.gather(
            *(
                controller.close(
                    CloseReason.RELAY_SHUTDOWN, was_interrupted=True, code=CLOSE_GOING_AWAY
                )
                for controller in list(_active_sessions)
            ),
            return_exceptions=True,
        )
        _active_sessions.clear()

    _supabase_client = None


def register_session(controller: SessionController) -> None:
    _active_sessions.add(controller)


def unregister_session(controller: SessionController) -> None:
    _active_sessions.discard(controller)


def get_active_session_count() -> int:
    return len(_active_sessions)


def _require(dependency):
    if dependency is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies first.")
    return dependency


def get_session_store() -> SessionStore:
    """Dependency: Get SessionStore instance."""
    return _require(_session_store)


def get_identity_verifier() -> IdentityVerifier:
    """Dependency: Get IdentityVerifier instance."""
    return _require(_identity_verifier)


def get_admission_service() -> AdmissionService:
    """Dependency: Get AdmissionService instance."""
    return _require(_admission_service)


def get_provider_connector() -> ProviderConnector:
    """Dependency: Get ProviderConnector instance."""
    return _require(_provider_connector)


def get_session_settings_dep() -> SessionSettings:
    """Dependency: Get SessionSettings instance."""
    return _require(_session_settings)


def get_usage_tracker() -> VoiceUsageTracker | None:
    """Dependency: Get usage tracker (None disables the cost log)."""
    return _usage_tracker


def get_token_signer() -> TokenSigner:
    """Dependency: Get TokenSigner instance.

    Raises:
        HTTPException 503 if LiveKit is not configured
    """
    if _token_signer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": {
                    "code": "CLASSROOM_NOT_CONFIGURED",
                    "message": "Classroom credentials are not configured",
                }
            },
        )
    return _token_signer


# Type aliases for dependency injection
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
IdentityVerifierDep = Annotated[IdentityVerifier, Depends(get_identity_verifier)]
AdmissionServiceDep = Annotated[AdmissionService, Depends(get_admission_service)]
ProviderConnectorDep = Annotated[ProviderConnector, Depends(get_provider_connector)]
SessionSettingsDep = Annotated[SessionSettings, Depends(get_session_settings_dep)]
UsageTrackerDep = Annotated[VoiceUsageTracker | None, Depends(get_usage_tracker)]
TokenSignerDep = Annotated[TokenSigner, Depends(get_token_signer)]


# =============================================================================
# In-Memory Rate Limiter
# =============================================================================


@dataclass(frozen=True)
class RateLimitConfig:
    """At most `max_requests` attempts per caller in any `window_seconds` span."""

    max_requests: int
    window_seconds: float


RATE_LIMITS: dict[str, RateLimitConfig] = {
    VOICE_ENDPOINT: RateLimitConfig(max_requests=10, window_seconds=60),
    CLASSROOM_TOKEN_ENDPOINT: RateLimitConfig(max_requests=30, window_seconds=60),
}


class InMemoryRateLimiter:
    """Per-caller sliding window limiter.

    Callers are keyed by the value the endpoint passes in (client address
    for both routes). State lives in this process only.
    """

    def __init__(
        self,
        limits: dict[str, RateLimitConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits = RATE_LIMITS if limits is None else limits
        self._clock = clock
        # _requests[endpoint][caller] = attempt times, oldest first
        self._requests: dict[str, dict[str, deque[float]]] = defaultdict(
            lambda: defaultdict(deque)
        )

    def _window(self, endpoint: str, caller: str, config: RateLimitConfig) -> deque[float]:
        window = self._requests[endpoint][caller]
        cutoff = self._clock() - config.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        return window

    def is_allowed(self, endpoint: str, caller: str) -> bool:
        config = self._limits.get(endpoint)
        if config is None:
            return True
        return len(self._window(endpoint, caller, config)) < config.max_requests

    def record_request(self, endpoint: str, caller: str) -> None:
        self._requests[endpoint][caller].append(self._clock())

    def check(self, endpoint: str, caller: str) -> bool:
        """Admit and record one attempt. Refused attempts are not recorded."""
        if not self.is_allowed(endpoint, caller):
            logger.debug(f"Rate limit hit on {endpoint} for {caller}")
            return False
        self.record_request(endpoint, caller)
        return True

    def get_remaining(self, endpoint: str, caller: str) -> int:
        """Attempts left in the current window (-1 when the endpoint is unlimited)."""
        config = self._limits.get(endpoint)
        if config is None:
            return -1
        return max(0, config.max_requests - len(self._window(endpoint, caller, config)))

    def reset(self) -> None:
        self._requests.clear()


# Singleton rate limiter
_rate_limiter = InMemoryRateLimiter()


def rate_limit(endpoint: str):
    """Dependency factory: Rate limit check for endpoint.

    Usage:
        @router.post("/api/classroom/token")
        async def classroom_token(
            _: Annotated[None, Depends(rate_limit("/api/classroom/token"))],
            ...
        ):

    Raises:
        HTTPException 429 if rate limit exceeded
    """

    config = RATE_LIMITS[endpoint]
    limit_message = f"Too many requests. Limit: {config.max_requests} per {config.window_seconds:g}s"

    async def check_rate_limit(request: Request) -> None:
        caller = request.client.host if request.client else "unknown"

        if not _rate_limiter.check(endpoint, caller):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": {
                        "code": "RATE_LIMIT_EXCEEDED",
                        "message": limit_message,
                    }
                },
            )

    return check_rate_limit

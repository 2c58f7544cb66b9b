"""
Composition Root.

Centralized dependency wiring for the application.
All factory functions that instantiate adapters belong here to maintain
hexagonal architecture (domain NEVER imports from adapters).
"""

import logging
from collections.abc import Callable
from pathlib import Path

from supabase import AsyncClient

from tutor_relay.adapters.jwt_identity import JwtIdentityVerifier
from tutor_relay.adapters.livekit_signer import LiveKitTokenSigner
from tutor_relay.adapters.openai_realtime import OpenAIRealtimeConnector
from tutor_relay.adapters.supabase_auth import SupabaseIdentityVerifier
from tutor_relay.adapters.supabase_client import create_supabase_client
from tutor_relay.adapters.supabase_store import SupabaseQuotaGate, SupabaseSessionStore
from tutor_relay.config import (
    get_livekit_api_key,
    get_livekit_api_secret,
    get_livekit_url,
    get_local_free_minutes,
    get_local_store_path,
    get_openai_api_key,
    get_realtime_model,
    get_realtime_url,
    get_supabase_jwt_secret,
    get_supabase_service_role_key,
    get_supabase_url,
)
from tutor_relay.domain.constants import ModelTier
from tutor_relay.domain.services.admission import AdmissionService
from tutor_relay.domain.value_objects.settings import SessionSettings
from tutor_relay.infrastructure.local_store import LocalSessionStore
from tutor_relay.infrastructure.usage_tracker import VoiceUsageTracker
from tutor_relay.ports.identity import IdentityVerifier
from tutor_relay.ports.quota import QuotaGate
from tutor_relay.ports.session_store import SessionStore

logger = logging.getLogger(__name__)


async def create_supabase() -> AsyncClient:
    """Create the shared Supabase client from environment configuration."""
    return await create_supabase_client(get_supabase_url(), get_supabase_service_role_key())


def create_local_store(db_path: str | None = None) -> LocalSessionStore:
    """Create the SQLite store (serves as both SessionStore and QuotaGate)."""
    path = db_path or get_local_store_path()
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return LocalSessionStore(path, default_minutes=get_local_free_minutes())


def create_supabase_store(client: AsyncClient) -> tuple[SessionStore, QuotaGate]:
    """Create Supabase-backed store and quota gate sharing one client."""
    return SupabaseSessionStore(client), SupabaseQuotaGate(client)


def create_identity_verifier(backend: str, client: AsyncClient | None = None) -> IdentityVerifier:
    """Create the identity verifier for the configured backend.

    Args:
        backend: 'supabase' or 'jwt'
        client: Supabase client, required for the 'supabase' backend
    """
    if backend == "jwt":
        return JwtIdentityVerifier(get_supabase_jwt_secret())
    if backend == "supabase":
        if client is None:
            raise ValueError("IDENTITY_BACKEND=supabase requires a Supabase client")
        return SupabaseIdentityVerifier(client)
    raise ValueError(f"Invalid IDENTITY_BACKEND: '{backend}'. Valid options: 'supabase', 'jwt'")


def create_provider_connector() -> OpenAIRealtimeConnector:
    """Create the realtime provider connector (one connection per session)."""
    return OpenAIRealtimeConnector(
        api_key=get_openai_api_key(),
        model=get_realtime_model(),
        url=get_realtime_url(),
    )


def create_token_signer() -> LiveKitTokenSigner | None:
    """Create the classroom token signer, or None when LiveKit is not configured."""
    api_key = get_livekit_api_key()
    api_secret = get_livekit_api_secret()
    if not api_key or not api_secret:
        logger.warning("LiveKit credentials not configured - classroom tokens disabled")
        return None
    return LiveKitTokenSigner(api_key, api_secret, get_livekit_url())


def create_usage_tracker(settings: SessionSettings, log_path: Path | None = None) -> VoiceUsageTracker:
    """Cost log pricing each model tier the session used."""
    return VoiceUsageTracker(
        {tier: settings.model_for(tier) for tier in (ModelTier.MINI, ModelTier.FULL)},
        log_path,
    )


def create_admission_service(
    identity_verifier: IdentityVerifier,
    quota_gate: QuotaGate,
    session_store: SessionStore,
    allow_request: Callable[[str], bool] | None = None,
) -> AdmissionService:
    """Create AdmissionService from the configured ports."""
    return AdmissionService(
        identity_verifier=identity_verifier,
        quota_gate=quota_gate,
        session_store=session_store,
        allow_request=allow_request,
    )

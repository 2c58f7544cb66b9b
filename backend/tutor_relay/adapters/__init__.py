# Adapters layer - Concrete implementations (OpenAI Realtime, Supabase, LiveKit)

from .fastapi_channel import FastAPIClientChannel
from .jwt_identity import JwtIdentityVerifier
from .livekit_signer import LiveKitTokenSigner
from .openai_realtime import OpenAIRealtimeChannel, OpenAIRealtimeConnector
from .supabase_auth import SupabaseIdentityVerifier
from .supabase_client import create_supabase_client
from .supabase_store import SupabaseQuotaGate, SupabaseSessionStore

__all__ = [
    "FastAPIClientChannel",
    "JwtIdentityVerifier",
    "LiveKitTokenSigner",
    "OpenAIRealtimeChannel",
    "OpenAIRealtimeConnector",
    "SupabaseIdentityVerifier",
    "SupabaseQuotaGate",
    "SupabaseSessionStore",
    "create_supabase_client",
]

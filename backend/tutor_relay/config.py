"""Relay configuration read from environment variables.

Each setting has a getter so tests can patch the environment per case.
Session limits are collected into SessionSettings; nothing else in the
package reads os.environ.
"""

import os
from pathlib import Path

from tutor_relay.domain.constants import (
    DEFAULT_CLIENT_KEEPALIVE_SECONDS,
    DEFAULT_ESCALATION_MODEL,
    DEFAULT_MAX_SESSION_SECONDS,
    DEFAULT_MODEL_SWITCH_COOLDOWN_SECONDS,
    DEFAULT_PROVIDER_KEEPALIVE_SECONDS,
    DEFAULT_REALTIME_MODEL,
)
from tutor_relay.domain.value_objects.settings import SessionSettings


def get_cors_origins() -> list[str]:
    """Get allowed CORS origins from environment.

    Environment variable: CORS_ORIGINS (comma-separated)
    Default: localhost ports 3000-3001 for development
    """
    default_origins = "http://localhost:3000,http://localhost:3001"
    origins_str = os.getenv("CORS_ORIGINS", default_origins)
    return [origin.strip() for origin in origins_str.split(",") if origin.strip()]


def get_cors_allow_credentials() -> bool:
    """Get CORS allow_credentials setting.

    Environment variable: CORS_ALLOW_CREDENTIALS
    Default: true for development (needed for cookies/auth)
    """
    return os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"


# Restricted HTTP methods - only what the API actually uses
CORS_ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]

# Restricted headers - only what's needed for the API
CORS_ALLOWED_HEADERS = [
    "Accept",
    "Accept-Language",
    "Content-Type",
    "Authorization",
    "X-Requested-With",
]


def is_production() -> bool:
    """Check if running in production environment."""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


# =============================================================================
# Backends
# =============================================================================


def get_store_backend() -> str:
    """Get session store / quota gate backend.

    Options:
        - 'supabase': Supabase tables (default)
        - 'local': SQLite file, no external services required
    """
    return os.getenv("STORE_BACKEND", "supabase").lower()


def get_identity_backend() -> str:
    """Get identity verifier backend.

    Options:
        - 'supabase': Remote token check via Supabase Auth (default)
        - 'jwt': Local HS256 verification with SUPABASE_JWT_SECRET
    """
    return os.getenv("IDENTITY_BACKEND", "supabase").lower()


def get_local_store_path() -> str:
    """Get SQLite database path for STORE_BACKEND=local."""
    default_path = str(Path.home() / ".tutor_relay" / "relay.db")
    return os.getenv("LOCAL_STORE_PATH", default_path)


def get_local_free_minutes() -> int:
    """Minutes granted per period by the local quota gate.

    Environment variable: LOCAL_FREE_MINUTES
    Default: 30 in development, 0 (deny without a quota row) in production
    """
    default = "0" if is_production() else "30"
    return int(os.getenv("LOCAL_FREE_MINUTES", default))


def get_supabase_url() -> str:
    return os.getenv("SUPABASE_URL", "")


def get_supabase_service_role_key() -> str:
    return os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")


def get_supabase_jwt_secret() -> str:
    return os.getenv("SUPABASE_JWT_SECRET", "")


# =============================================================================
# Realtime provider
# =============================================================================


def get_openai_api_key() -> str:
    """Get OpenAI API key.

    Environment variable: OPENAI_API_KEY
    Required for voice sessions.
    """
    return os.getenv("OPENAI_API_KEY", "")


def get_realtime_url() -> str:
    return os.getenv("REALTIME_URL", "wss://api.openai.com/v1/realtime")


def get_realtime_model() -> str:
    return os.getenv("REALTIME_MODEL", DEFAULT_REALTIME_MODEL)


def get_escalation_model() -> str | None:
    """Model confused students are switched to.

    Environment variable: REALTIME_FULL_MODEL
    An empty value disables model switching.
    """
    return os.getenv("REALTIME_FULL_MODEL", DEFAULT_ESCALATION_MODEL) or None


def get_model_switch_cooldown_seconds() -> float:
    return float(
        os.getenv("MODEL_SWITCH_COOLDOWN_SECONDS", str(DEFAULT_MODEL_SWITCH_COOLDOWN_SECONDS))
    )


def get_realtime_voice() -> str:
    return os.getenv("REALTIME_VOICE", "ballad")


# =============================================================================
# Session limits
# =============================================================================


def get_max_session_seconds() -> int:
    """Hard session duration budget (also caps logged duration).

    Environment variable: MAX_SESSION_SECONDS
    Default: 300 (5 minutes)
    """
    return int(os.getenv("MAX_SESSION_SECONDS", str(DEFAULT_MAX_SESSION_SECONDS)))


def get_client_keepalive_seconds() -> float:
    return float(os.getenv("CLIENT_KEEPALIVE_SECONDS", str(DEFAULT_CLIENT_KEEPALIVE_SECONDS)))


def get_provider_keepalive_seconds() -> float:
    return float(os.getenv("PROVIDER_KEEPALIVE_SECONDS", str(DEFAULT_PROVIDER_KEEPALIVE_SECONDS)))


def get_session_settings() -> SessionSettings:
    """Gather the session values into one immutable settings object."""
    return SessionSettings(
        max_session_seconds=get_max_session_seconds(),
        client_keepalive_seconds=get_client_keepalive_seconds(),
        provider_keepalive_seconds=get_provider_keepalive_seconds(),
        voice=get_realtime_voice(),
        model=get_realtime_model(),
        escalation_model=get_escalation_model(),
        model_switch_cooldown_seconds=get_model_switch_cooldown_seconds(),
    )


def get_usage_log_path() -> Path | None:
    """JSONL cost log for finished sessions (None uses the default location)."""
    path = os.getenv("USAGE_LOG_PATH")
    return Path(path) if path else None


# =============================================================================
# Classroom (LiveKit)
# =============================================================================


def get_livekit_url() -> str:
    """Get LiveKit server URL.

    Environment variable: LIVEKIT_URL
    Default: ws://localhost:7880 for development
    """
    return os.getenv("LIVEKIT_URL", "ws://localhost:7880")


def get_livekit_api_key() -> str:
    """Get LiveKit API key.

    Environment variable: LIVEKIT_API_KEY
    Required for classroom tokens.
    """
    return os.getenv("LIVEKIT_API_KEY", "")


def get_livekit_api_secret() -> str:
    """Get LiveKit API secret.

    Environment variable: LIVEKIT_API_SECRET
    Required for classroom tokens.
    """
    return os.getenv("LIVEKIT_API_SECRET", "")

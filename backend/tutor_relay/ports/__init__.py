# Ports layer - Abstract interfaces (Protocols)

from .channels import (
    ChannelClosedError,
    ClientChannel,
    ProviderChannel,
    ProviderConnectError,
    ProviderConnector,
)
from .identity import IdentityVerifier, UnauthorizedError
from .quota import QuotaCheckError, QuotaGate
from .session_store import SessionStore, SessionStoreError
from .token_signer import TokenSigner

__all__ = [
    "ChannelClosedError",
    "ClientChannel",
    "IdentityVerifier",
    "ProviderChannel",
    "ProviderConnectError",
    "ProviderConnector",
    "QuotaCheckError",
    "QuotaGate",
    "SessionStore",
    "SessionStoreError",
    "TokenSigner",
    "UnauthorizedError",
]

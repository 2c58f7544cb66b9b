"""Translator effects.

The protocol translator never touches a channel or the store directly.
It returns an ordered list of these effects and the session controller
applies them in order.
"""

from dataclasses import dataclass
from typing import Any

from tutor_relay.domain.value_objects.conversation import MessageRole


@dataclass(frozen=True)
class SendToClient:
    """Send a message to the client channel.

    A str is forwarded verbatim (raw passthrough); a dict is JSON-encoded.
    """

    message: dict[str, Any] | str


@dataclass(frozen=True)
class SendToProvider:
    """Send an event to the provider channel (dict or verbatim str)."""

    event: dict[str, Any] | str


@dataclass(frozen=True)
class PersistMessage:
    """Append one completed turn to the Session Store."""

    role: MessageRole
    content: str


@dataclass(frozen=True)
class CloseSession:
    """Ask the controller to end the session (the controller decides)."""

    reason: str
    was_interrupted: bool = True


@dataclass(frozen=True)
class SwitchModel:
    """Ask the controller to move the session to the full model.

    `question` is the student turn that triggered the switch; it is sent
    to the new channel instead of the current one.
    """

    question: str


Effect = SendToClient | SendToProvider | PersistMessage | CloseSession | SwitchModel

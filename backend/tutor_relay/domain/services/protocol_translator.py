"""
Protocol Translator.

Turns one inbound message (from either channel) into an ordered list of
effects. It owns the per-session transcript buffers and response flags
through the VoiceSession it is given, but never performs I/O: the
session controller applies the effects in the order returned.
"""

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from tutor_relay.domain.constants import (
    CONFUSION_TRIGGERS,
    EXPLANATION_CHECK_PHRASES,
    ClientRequestType,
    ModelTier,
    NoticeMessages,
    ProviderEventType,
)
from tutor_relay.domain.entities.session import VoiceSession
from tutor_relay.domain.services import client_notices
from tutor_relay.domain.services.barge_in import BargeInHandler
from tutor_relay.domain.services.content_sequencer import ContentSequencer
from tutor_relay.domain.services.prompt_assembler import PromptAssembler, PromptContext
from tutor_relay.domain.services.tool_dispatcher import (
    ToolArgumentError,
    ToolDispatcher,
    ToolOutcome,
    UnknownToolError,
)
from tutor_relay.domain.value_objects.conversation import MessageRole
from tutor_relay.domain.value_objects.effects import (
    CloseSession,
    Effect,
    PersistMessage,
    SendToClient,
    SendToProvider,
    SwitchModel,
)
from tutor_relay.domain.value_objects.provider_event import (
    EventClass,
    ProviderError,
    ProviderEvent,
    Speaker,
)
from tutor_relay.domain.value_objects.settings import SessionSettings

logger = logging.getLogger(__name__)

RESPONSE_CREATE = {"type": ProviderEventType.RESPONSE_CREATE}


def detect_confusion(text: str) -> bool:
    """Check whether a student turn contains a confusion phrase."""
    lowered = text.lower()
    return any(trigger in lowered for trigger in CONFUSION_TRIGGERS)


def is_understanding_check(text: str) -> bool:
    """Check whether a tutor turn ends by asking if the explanation landed."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in EXPLANATION_CHECK_PHRASES)


def function_call_output(call_id: str | None, output: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": ProviderEventType.CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(output),
        },
    }


class ProtocolTranslator:
    """Stateless rules over per-session state.

    Events from one channel must be passed in arrival order; the returned
    effects preserve that order.
    """

    def __init__(
        self,
        session: VoiceSession,
        sequencer: ContentSequencer,
        prompt_assembler: PromptAssembler,
        prompt_context: PromptContext,
        barge_in: BargeInHandler | None = None,
        settings: SessionSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.sequencer = sequencer
        self.prompt_assembler = prompt_assembler
        self.prompt_context = prompt_context
        self.barge_in = barge_in or BargeInHandler()
        self.tools = ToolDispatcher(session, sequencer)
        self.settings = settings or prompt_assembler.settings
        self._clock = clock

    def can_escalate(self) -> bool:
        """A confused student may be moved to the full model right now."""
        return bool(self.settings.escalation_model) and self.session.can_escalate(
            self._clock(), self.settings.model_switch_cooldown_seconds
        )

    # =========================================================================
    # Provider -> client
    # =========================================================================

    def translate_provider_message(self, raw: str | bytes) -> list[Effect]:
        """Translate one provider message into effects."""
        try:
            event = ProviderEvent.parse(raw)
        except ValueError as e:
            logger.warning(f"Dropping malformed provider event: {e}")
            return [
                SendToClient(
                    client_notices.server_error(
                        "Malformed provider event", details={"reason": str(e)}
                    )
                )
            ]

        match event.event_class:
            case EventClass.SPEECH_FRAGMENT:
                effects = self._on_fragment(event)
            case EventClass.SPEECH_FINAL:
                effects = self._on_final(event)
            case EventClass.TOOL_CALL:
                effects = self._on_tool_call(event)
            case EventClass.LIFECYCLE:
                effects = self._on_lifecycle(event)
            case EventClass.ERROR:
                # Never forwarded raw
                return self._on_error(event)
            case _:
                effects = self._on_other(event)

        effects.append(SendToClient(event.raw))
        return effects

    def _on_fragment(self, event: ProviderEvent) -> list[Effect]:
        self.session.append_fragment(event.speaker, event.fragment)
        return []

    def _on_final(self, event: ProviderEvent) -> list[Effect]:
        content = self.session.flush(event.speaker, event.final_text)
        if content is None:
            return []

        if event.speaker == Speaker.ASSISTANT:
            effects: list[Effect] = [PersistMessage(MessageRole.ASSISTANT, content)]
            if self.session.model_tier == ModelTier.FULL and is_understanding_check(content):
                logger.info("Deep explanation complete")
                effects.append(SendToClient(client_notices.explanation_complete()))
            return effects

        effects = [PersistMessage(MessageRole.USER, content)]
        # Spoken confusion is only flagged; the switch itself needs a typed turn
        if detect_confusion(content) and self.can_escalate():
            logger.info("Confusion detected in spoken turn")
            effects.append(SendToClient(client_notices.confusion_detected(content)))
        return effects

    def _on_tool_call(self, event: ProviderEvent) -> list[Effect]:
        call_id = event.payload.get("call_id")
        name = str(event.payload.get("name") or "")
        if call_id is None:
            logger.warning(f"Tool call {name!r} has no call_id")
        else:
            self.session.pending_tool_calls.discard(call_id)

        outcome = self._run_tool(name, event.payload.get("arguments"))

        effects: list[Effect] = [SendToClient(m) for m in outcome.client_messages]
        effects.extend(SendToProvider(e) for e in outcome.provider_events)
        effects.append(SendToProvider(function_call_output(call_id, outcome.output)))
        effects.append(SendToProvider(dict(RESPONSE_CREATE)))
        return effects

    def _run_tool(self, name: str, raw_arguments: Any) -> ToolOutcome:
        """Run a tool, converting every failure into a failure output."""
        try:
            args = json.loads(raw_arguments) if raw_arguments else {}
            if not isinstance(args, dict):
                raise ToolArgumentError("Tool arguments must be a JSON object")
            return self.tools.dispatch(name, args)
        except UnknownToolError as e:
            logger.warning(str(e))
            return ToolOutcome(output={"success": False, "error": str(e)})
        except (ToolArgumentError, ValueError, TypeError) as e:
            logger.warning(f"Invalid arguments for tool {name!r}: {e}")
            return ToolOutcome(output={"success": False, "error": f"Invalid arguments: {e}"})
        except Exception as e:
            logger.exception(f"Tool handler {name!r} failed")
            return ToolOutcome(output={"success": False, "error": f"Tool failed: {e}"})

    def _on_lifecycle(self, event: ProviderEvent) -> list[Effect]:
        match event.type:
            case ProviderEventType.SESSION_CREATED:
                return self._configure_session()
            case ProviderEventType.RESPONSE_CREATED:
                self.session.mark_response_started()
            case ProviderEventType.RESPONSE_DONE | ProviderEventType.RESPONSE_CANCELLED:
                self.session.mark_response_finished()
            case ProviderEventType.SPEECH_STARTED:
                result = self.barge_in.handle_speech_started(self.session)
                if result.should_cancel:
                    logger.info("Student started speaking - cancelling active response")
                    return [SendToProvider(result.cancel_event)]
        return []

    def _configure_session(self) -> list[Effect]:
        """Configure the provider session, reveal the first step and greet."""
        if self.session.is_configured:
            return []
        self.session.is_configured = True

        effects: list[Effect] = [
            SendToProvider(self.prompt_assembler.build_session_update(self.prompt_context))
        ]

        plan = self.prompt_context.lesson_plan
        if plan is not None and plan.first_step is not None:
            first = plan.first_step
            result = self.sequencer.move_to_step(first.id, first.title)
            if result.client_message:
                effects.append(SendToClient(result.client_message))

        greeting = self.prompt_assembler.build_greeting(self.prompt_context)
        effects.extend(
            [
                SendToProvider(PromptAssembler.build_user_turn(greeting)),
                SendToProvider(dict(RESPONSE_CREATE)),
                PersistMessage(MessageRole.SYSTEM, f"Initial greeting prompt: {greeting}"),
            ]
        )
        logger.info(f"Session {self.session.id} configured")
        return effects

    def _on_error(self, event: ProviderEvent) -> list[Effect]:
        error = ProviderError.from_payload(event.payload)
        details = {"type": error.type}
        if error.code:
            details["code"] = error.code

        if not error.is_fatal:
            logger.warning(f"Provider error ({error.type}/{error.code}): {error.message}")
            return [SendToClient(client_notices.server_error(error.message, details=details))]

        logger.error(f"Fatal provider error ({error.type}/{error.code}): {error.message}")
        return [
            SendToClient(
                client_notices.server_error(
                    error.message,
                    message=NoticeMessages.PROVIDER_LOST,
                    fatal=True,
                    details=details,
                )
            ),
            CloseSession(reason=f"provider_error:{error.code or error.type}", was_interrupted=True),
        ]

    def _on_other(self, event: ProviderEvent) -> list[Effect]:
        if event.type == ProviderEventType.OUTPUT_ITEM_ADDED:
            item = event.payload.get("item")
            if isinstance(item, dict) and item.get("type") == "function_call" and item.get("call_id"):
                self.session.pending_tool_calls.add(item["call_id"])
        return []

    # =========================================================================
    # Client -> provider
    # =========================================================================

    def translate_client_message(self, raw: str) -> list[Effect]:
        """Translate one client message into effects."""
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropping unparseable client message")
            return [SendToClient(client_notices.server_error("Invalid message format"))]

        if not isinstance(message, dict) or message.get("type") != ClientRequestType.USER_MESSAGE:
            return [SendToProvider(raw)]

        text = message.get("text")
        if not isinstance(text, str) or not text.strip():
            return [SendToClient(client_notices.server_error("user_message requires non-empty text"))]

        effects: list[Effect] = [PersistMessage(MessageRole.USER, text)]
        if detect_confusion(text) and self.can_escalate():
            logger.info("Confusion detected in typed turn - switching to the full model")
            effects.append(SwitchModel(text))
            return effects
        effects.append(SendToProvider(PromptAssembler.build_user_turn(text)))
        effects.append(SendToProvider(dict(RESPONSE_CREATE)))
        return effects

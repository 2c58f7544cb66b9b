"""
Tool Dispatcher.

Maps provider function calls to handlers. Step tools go to the content
sequencer; ad hoc content tools become content.block messages; the speed
tool adjusts the session. Handlers only describe what to send, the
protocol translator turns that into effects.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tutor_relay.domain.constants import ClientMessageType
from tutor_relay.domain.entities.lesson import ContentBlockType
from tutor_relay.domain.entities.session import VoiceSession
from tutor_relay.domain.services import client_notices
from tutor_relay.domain.services.content_sequencer import ContentSequencer, SequencerResult
from tutor_relay.domain.services.prompt_assembler import PromptAssembler

logger = logging.getLogger(__name__)


class UnknownToolError(Exception):
    """Raised when the provider calls a tool that has no handler."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolArgumentError(ValueError):
    """Raised when a tool call is missing a required argument."""

    pass


@dataclass(frozen=True)
class ToolOutcome:
    """What a tool call produced.

    Attributes:
        output: Payload of the function_call_output sent back to the provider
        client_messages: Messages for the client, in order
        provider_events: Extra provider events sent before the output
    """

    output: dict[str, Any]
    client_messages: list[dict[str, Any]] = field(default_factory=list)
    provider_events: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.output.get("success"))

    @classmethod
    def from_sequencer(cls, result: SequencerResult) -> "ToolOutcome":
        messages = [result.client_message] if result.client_message else []
        return cls(output=result.output, client_messages=messages)


def _require(args: dict[str, Any], name: str) -> Any:
    value = args.get(name)
    if value is None or value == "":
        raise ToolArgumentError(f"Missing required argument: {name}")
    return value


class ToolDispatcher:
    """Dispatches function calls for one session."""

    def __init__(self, session: VoiceSession, sequencer: ContentSequencer) -> None:
        self._session = session
        self._sequencer = sequencer
        self._handlers: dict[str, Callable[[dict[str, Any]], ToolOutcome]] = {
            "move_to_step": self._move_to_step,
            "show_next_content": self._show_next_content,
            "complete_step": self._complete_step,
            "complete_lesson": self._complete_lesson,
            "show_table": self._show_table,
            "show_definition": self._show_definition,
            "show_quote_analysis": self._show_quote_analysis,
            "ask_question": self._ask_question,
            "change_speed": self._change_speed,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def dispatch(self, name: str, args: dict[str, Any]) -> ToolOutcome:
        """Run the handler for `name`.

        Raises:
            UnknownToolError: If no handler exists
            ToolArgumentError: If a required argument is missing
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)
        logger.info(f"Tool call: {name}")
        return handler(args)

    # -------------------------------------------------------------------------
    # Step tools (sequencer)
    # -------------------------------------------------------------------------

    def _move_to_step(self, args: dict[str, Any]) -> ToolOutcome:
        step_id = str(_require(args, "stepId"))
        return ToolOutcome.from_sequencer(
            self._sequencer.move_to_step(step_id, args.get("stepTitle"))
        )

    def _show_next_content(self, args: dict[str, Any]) -> ToolOutcome:
        return ToolOutcome.from_sequencer(
            self._sequencer.show_next_content(str(args.get("reason") or ""))
        )

    def _complete_step(self, args: dict[str, Any]) -> ToolOutcome:
        step_id = args.get("stepId") or self._sequencer.current_step_id
        if not step_id:
            raise ToolArgumentError("Missing required argument: stepId")
        return ToolOutcome.from_sequencer(self._sequencer.complete_step(str(step_id)))

    def _complete_lesson(self, args: dict[str, Any]) -> ToolOutcome:
        return ToolOutcome.from_sequencer(
            self._sequencer.complete_lesson(str(args.get("summary") or ""))
        )

    # -------------------------------------------------------------------------
    # Ad hoc content tools
    # -------------------------------------------------------------------------

    def _content_block(self, block_type: str, args: dict[str, Any], data: dict) -> ToolOutcome:
        block_id = str(_require(args, "id"))
        message = {
            "type": ClientMessageType.CONTENT_BLOCK,
            "block": {
                "id": block_id,
                "stepId": "current",
                "type": block_type,
                "data": {k: v for k, v in data.items() if v is not None},
                "visible": False,
            },
            "autoShow": True,
        }
        return ToolOutcome(
            output={"success": True, "displayed": True},
            client_messages=[message],
        )

    def _show_table(self, args: dict[str, Any]) -> ToolOutcome:
        return self._content_block(
            ContentBlockType.TABLE,
            args,
            {"headers": _require(args, "headers"), "rows": _require(args, "rows")},
        )

    def _show_definition(self, args: dict[str, Any]) -> ToolOutcome:
        return self._content_block(
            ContentBlockType.DEFINITION,
            args,
            {
                "term": _require(args, "term"),
                "definition": _require(args, "definition"),
                "example": args.get("example"),
            },
        )

    def _show_quote_analysis(self, args: dict[str, Any]) -> ToolOutcome:
        return self._content_block(
            ContentBlockType.QUOTE_ANALYSIS,
            args,
            {
                "quote": _require(args, "quote"),
                "source": args.get("source"),
                "analysis": _require(args, "analysis"),
                "techniques": args.get("techniques"),
            },
        )

    def _ask_question(self, args: dict[str, Any]) -> ToolOutcome:
        return self._content_block(
            ContentBlockType.QUESTION,
            args,
            {
                "id": args.get("id"),
                "question": _require(args, "question"),
                "options": _require(args, "options"),
                "explanation": args.get("explanation"),
            },
        )

    # -------------------------------------------------------------------------
    # Speech speed
    # -------------------------------------------------------------------------

    def _change_speed(self, args: dict[str, Any]) -> ToolOutcome:
        direction = str(_require(args, "direction")).lower()
        if direction not in ("slower", "faster"):
            raise ToolArgumentError(f"direction must be 'slower' or 'faster', got {direction!r}")

        previous = self._session.speech_speed
        speed = self._session.adjust_speed(faster=direction == "faster")
        if speed == previous:
            return ToolOutcome(
                output={
                    "success": True,
                    "speed": speed,
                    "message": f"Already speaking as {direction.removesuffix('er')} as possible.",
                }
            )

        return ToolOutcome(
            output={"success": True, "speed": speed},
            client_messages=[client_notices.speed_changed(speed, direction)],
            provider_events=[PromptAssembler.build_speed_update(speed)],
        )

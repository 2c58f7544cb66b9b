"""
Content-Reveal Sequencer.

Owns the per-session pointer into the lesson plan (current step, current
block index) and is the only thing that decides what the student can see.
Every operation is driven by an explicit tool call from the provider.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from tutor_relay.domain.constants import ClientMessageType, MarkerType
from tutor_relay.domain.entities.lesson import ContentBlock, LessonPlan, LessonStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequencerResult:
    """Outcome of a sequencer operation (immutable value object).

    Attributes:
        success: Whether the request was accepted
        output: Function-call output payload returned to the provider
        client_message: content.marker to send to the client, if any
    """

    success: bool
    output: dict[str, Any]
    client_message: dict[str, Any] | None = None


@dataclass
class ContentSequencer:
    """Progress pointer into a lesson plan for one session.

    Without a lesson plan every step ID is accepted as an empty step, so
    topic-only sessions can still report step changes to the client.

    Attributes:
        lesson_plan: Loaded plan, or None for topic/open sessions
        current_step_id: Step most recently moved to
        current_block_index: Index of the last revealed block in the current step,
            -1 while nothing is revealed (no step yet, or a step without blocks)
        completed_steps: Steps marked done (for progress tracking)
        lesson_completed: complete_lesson already accepted
    """

    lesson_plan: LessonPlan | None = None
    current_step_id: str | None = None
    current_block_index: int = -1
    completed_steps: set[str] = field(default_factory=set)
    lesson_completed: bool = False

    @property
    def current_step(self) -> LessonStep | None:
        if self.current_step_id is None or self.lesson_plan is None:
            return None
        return self.lesson_plan.get_step(self.current_step_id)

    def visible_blocks(self) -> list[ContentBlock]:
        """Blocks of the current step revealed so far."""
        step = self.current_step
        if step is None or not step.blocks:
            return []
        return list(step.blocks[: self.current_block_index + 1])

    def move_to_step(self, step_id: str, step_title: str | None = None) -> SequencerResult:
        """Make `step_id` current and reveal its first block.

        Always resets the block index to 0, also for the step that is
        already current. A step without blocks leaves it at -1.
        """
        step: LessonStep | None = None
        if self.lesson_plan is not None:
            step = self.lesson_plan.get_step(step_id)
            if step is None:
                logger.warning(f"move_to_step rejected: unknown step {step_id!r}")
                return SequencerResult(
                    success=False,
                    output={
                        "success": False,
                        "error": f"Unknown step ID: {step_id}. Use an ID from the lesson plan.",
                    },
                )

        title = step_title or (step.title if step else step_id)
        self.current_step_id = step_id
        first_block = step.blocks[0] if step and step.blocks else None
        self.current_block_index = 0 if first_block is not None else -1
        logger.info(f"Moved to step {step_id} ({title})")
        return SequencerResult(
            success=True,
            output={
                "success": True,
                "message": f"Moved to step: {title}. The first content block is now visible to the student.",
                "blockCount": step.block_count if step else 0,
            },
            client_message=self._marker(
                MarkerType.MOVE_TO_STEP,
                stepId=step_id,
                stepTitle=title,
                blockIndex=self.current_block_index,
                block=first_block.to_dict() if first_block else None,
            ),
        )

    def show_next_content(self, reason: str = "") -> SequencerResult:
        """Reveal the next block of the current step.

        Past the last block this is a no-op acknowledgement, not an error.
        """
        if self.current_step_id is None:
            return SequencerResult(
                success=False,
                output={"success": False, "error": "No active step. Call move_to_step first."},
            )

        step = self.current_step
        block_count = step.block_count if step else 0
        if self.current_block_index + 1 >= block_count:
            logger.debug(f"show_next_content no-op at block {self.current_block_index}")
            return SequencerResult(
                success=True,
                output={
                    "success": True,
                    "displayed": False,
                    "message": "All content for this step is already visible. Do not advance further.",
                },
            )

        self.current_block_index += 1
        block = step.blocks[self.current_block_index]
        logger.info(
            f"Revealed block {self.current_block_index + 1}/{block_count} "
            f"of step {self.current_step_id}" + (f" ({reason})" if reason else "")
        )
        return SequencerResult(
            success=True,
            output={
                "success": True,
                "displayed": True,
                "blockIndex": self.current_block_index,
                "remaining": block_count - self.current_block_index - 1,
            },
            client_message=self._marker(
                MarkerType.SHOW_NEXT_CONTENT,
                stepId=self.current_step_id,
                blockIndex=self.current_block_index,
                block=block.to_dict(),
                reason=reason,
            ),
        )

    def complete_step(self, step_id: str) -> SequencerResult:
        """Mark a step as done. Idempotent: the marker is only sent once."""
        if step_id in self.completed_steps:
            return SequencerResult(
                success=True,
                output={"success": True, "message": f"Step {step_id} was already complete."},
            )

        self.completed_steps.add(step_id)
        return SequencerResult(
            success=True,
            output={"success": True, "message": f"Step {step_id} marked complete."},
            client_message=self._marker(MarkerType.COMPLETE_STEP, stepId=step_id),
        )

    def complete_lesson(self, summary: str = "") -> SequencerResult:
        """Terminal marker for the lesson. Does not end the session."""
        if self.lesson_completed:
            return SequencerResult(
                success=True,
                output={"success": True, "message": "Lesson was already complete."},
            )

        self.lesson_completed = True
        logger.info("Lesson complete")
        return SequencerResult(
            success=True,
            output={"success": True, "message": "Lesson marked complete."},
            client_message=self._marker(
                MarkerType.LESSON_COMPLETE,
                summary=summary,
                completedSteps=sorted(self.completed_steps),
            ),
        )

    @staticmethod
    def _marker(marker_type: str, **data: Any) -> dict[str, Any]:
        return {"type": ClientMessageType.CONTENT_MARKER, "data": {"type": marker_type, **data}}

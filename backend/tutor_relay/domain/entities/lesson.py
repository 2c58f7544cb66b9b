"""Lesson plan entities (loaded, never created, by the relay)."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Self, TypedDict


class ContentBlockType(StrEnum):
    """Known content block types.

    Blocks of other types are still carried; the client decides how to
    render them.
    """

    TEXT = "text"
    TABLE = "table"
    DEFINITION = "definition"
    QUOTE_ANALYSIS = "quote_analysis"
    QUESTION = "question"
    WORKED_EXAMPLE = "worked_example"
    DIAGRAM = "diagram"


class ContentBlockDict(TypedDict):
    """Content block as sent to the client."""

    id: str
    stepId: str
    type: str
    data: dict[str, Any]
    title: str | None
    visible: bool


@dataclass(frozen=True)
class ContentBlock:
    """One discrete unit of lesson material.

    Attributes:
        id: Block ID (unique within the lesson plan)
        step_id: Owning step
        type: Block type (see ContentBlockType)
        data: Opaque payload rendered by the client
        title: Optional heading
        teaching_notes: Guidance for the tutor, never sent to the client
    """

    id: str
    step_id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    title: str | None = None
    teaching_notes: str | None = None

    def to_dict(self, visible: bool = True) -> ContentBlockDict:
        """Convert block to its client wire shape."""
        return {
            "id": self.id,
            "stepId": self.step_id,
            "type": self.type,
            "data": dict(self.data),
            "title": self.title,
            "visible": visible,
        }


@dataclass(frozen=True)
class LessonStep:
    """Lesson step with a fixed presentation order of blocks."""

    id: str
    title: str
    blocks: tuple[ContentBlock, ...] = ()
    duration_minutes: int | None = None

    @property
    def block_count(self) -> int:
        return len(self.blocks)


@dataclass(frozen=True)
class LessonPlan:
    """Lesson plan with its ordered teaching sequence."""

    id: str
    topic: str
    year_group: str | None = None
    subject: str | None = None
    difficulty_tier: str | None = None
    learning_objectives: tuple[str, ...] = ()
    steps: tuple[LessonStep, ...] = ()

    def get_step(self, step_id: str) -> LessonStep | None:
        """Find a step by ID."""
        return next((s for s in self.steps if s.id == step_id), None)

    @property
    def first_step(self) -> LessonStep | None:
        return self.steps[0] if self.steps else None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        """Build from a stored lesson plan row.

        Expects `teaching_sequence` as a list of steps, each with an
        optional `content_blocks` list. Malformed entries are skipped.
        """
        steps: list[LessonStep] = []
        for index, raw_step in enumerate(record.get("teaching_sequence") or []):
            if not isinstance(raw_step, dict):
                continue
            step_id = str(raw_step.get("id") or f"step-{index}")
            blocks = tuple(
                ContentBlock(
                    id=str(raw_block.get("id") or f"{step_id}-block-{block_index}"),
                    step_id=step_id,
                    type=str(raw_block.get("type") or ContentBlockType.TEXT),
                    data=raw_block.get("data") or {},
                    title=raw_block.get("title"),
                    teaching_notes=raw_block.get("teaching_notes"),
                )
                for block_index, raw_block in enumerate(raw_step.get("content_blocks") or [])
                if isinstance(raw_block, dict)
            )
            steps.append(
                LessonStep(
                    id=step_id,
                    title=str(raw_step.get("title") or f"Step {index + 1}"),
                    blocks=blocks,
                    duration_minutes=raw_step.get("duration_minutes"),
                )
            )

        return cls(
            id=str(record["id"]),
            topic=str(record.get("topic") or ""),
            year_group=record.get("year_group"),
            subject=record.get("subject"),
            difficulty_tier=record.get("difficulty_tier"),
            learning_objectives=tuple(record.get("learning_objectives") or ()),
            steps=tuple(steps),
        )

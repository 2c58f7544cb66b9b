"""
Prompt Assembler.

Builds everything the provider needs to start a tutoring session:
instructions, tool schemas, the greeting turn and the session.update
payload. Teaching style is a plain table lookup keyed by
(subject, difficulty tier); nothing here talks to a channel.
"""

from dataclasses import dataclass
from typing import Any

from tutor_relay.domain.constants import ProviderEventType
from tutor_relay.domain.entities.lesson import ContentBlock, LessonPlan
from tutor_relay.domain.value_objects.settings import SessionSettings

TUTOR_NAME = "Cleo"

# Server VAD tuning for spoken tutoring (short pauses are part of thinking)
TURN_DETECTION = {
    "type": "server_vad",
    "threshold": 0.5,
    "prefix_padding_ms": 300,
    "silence_duration_ms": 700,
}
MAX_RESPONSE_OUTPUT_TOKENS = 4096


# =============================================================================
# Teaching styles
# =============================================================================


class Tier:
    FOUNDATION = "foundation"
    INTERMEDIATE = "intermediate"
    HIGHER = "higher"


class SubjectFamily:
    MATHS = "maths"
    ENGLISH_LITERATURE = "english_literature"
    SCIENCE = "science"
    GENERAL = "general"


@dataclass(frozen=True)
class TeachingStyle:
    """Template parameters for one (subject, tier) pair."""

    grade_range: str
    pacing: str
    scaffolding: str
    explanation_focus: str


_GRADE_RANGES = {
    Tier.FOUNDATION: "Grades 1-4",
    Tier.INTERMEDIATE: "Grades 4-6",
    Tier.HIGHER: "Grades 6-9",
}

_SCAFFOLDING = {
    Tier.FOUNDATION: "Break every method into tiny steps and give a hint before each question.",
    Tier.INTERMEDIATE: "Show clear multi-step methods and give light hints only when the student is stuck.",
    Tier.HIGHER: "Expect independent reasoning; ask the student to justify each step before confirming it.",
}

_PACING = {
    Tier.FOUNDATION: "Go slowly and check understanding after every idea.",
    Tier.INTERMEDIATE: "Move at a steady pace and check understanding after each step.",
    Tier.HIGHER: "Keep a brisk pace and spend the time on exam-style reasoning.",
}

_FOCUS = {
    SubjectFamily.MATHS: {
        Tier.FOUNDATION: "Use small whole numbers and single operations; build confidence with repetition.",
        Tier.INTERMEDIATE: "Work through multi-step problems using exam-style wording.",
        Tier.HIGHER: "Use multi-step exam questions and formal algebraic notation.",
    },
    SubjectFamily.ENGLISH_LITERATURE: {
        Tier.FOUNDATION: "Focus on what a quotation means and one technique it uses.",
        Tier.INTERMEDIATE: "Link quotations to techniques and their effect on the reader.",
        Tier.HIGHER: "Explore alternative interpretations and the writer's intentions in context.",
    },
    SubjectFamily.SCIENCE: {
        Tier.FOUNDATION: "Use everyday examples and key vocabulary with short definitions.",
        Tier.INTERMEDIATE: "Connect processes to equations and simple practical examples.",
        Tier.HIGHER: "Use required practicals, data analysis and extended explanations.",
    },
    SubjectFamily.GENERAL: {
        Tier.FOUNDATION: "Use concrete examples before introducing terminology.",
        Tier.INTERMEDIATE: "Balance worked examples with short questions.",
        Tier.HIGHER: "Stretch the student with open questions and applications.",
    },
}

TEACHING_STYLES: dict[tuple[str, str], TeachingStyle] = {
    (subject, tier): TeachingStyle(
        grade_range=_GRADE_RANGES[tier],
        pacing=_PACING[tier],
        scaffolding=_SCAFFOLDING[tier],
        explanation_focus=focus,
    )
    for subject, by_tier in _FOCUS.items()
    for tier, focus in by_tier.items()
}


def normalize_subject(subject: str | None) -> str:
    """Map a free-text subject name to a subject family."""
    name = (subject or "").lower()
    if "math" in name:
        return SubjectFamily.MATHS
    if "english" in name and "lit" in name:
        return SubjectFamily.ENGLISH_LITERATURE
    if any(s in name for s in ("science", "biology", "chemistry", "physics")):
        return SubjectFamily.SCIENCE
    return SubjectFamily.GENERAL


def normalize_tier(tier: str | None) -> str:
    name = (tier or "").lower()
    if name in (Tier.FOUNDATION, Tier.INTERMEDIATE, Tier.HIGHER):
        return name
    return Tier.INTERMEDIATE


def get_teaching_style(subject: str | None, tier: str | None) -> TeachingStyle:
    """Look up the teaching style for a subject and difficulty tier."""
    return TEACHING_STYLES[(normalize_subject(subject), normalize_tier(tier))]


# =============================================================================
# Tool schemas
# =============================================================================


def _function(name: str, description: str, properties: dict, required: list[str]) -> dict:
    return {
        "type": "function",
        "name": name,
        "description": description,
        "parameters": {"type": "object", "properties": properties, "required": required},
    }


STEP_TOOLS = [
    _function(
        "move_to_step",
        "Call this BEFORE you start teaching a step. Displays the first content block of "
        "that step. Use the exact step ID shown in brackets [ID: ...] in your instructions.",
        {
            "stepId": {"type": "string", "description": "The exact step ID from the lesson plan"},
            "stepTitle": {"type": "string", "description": "The title of this step"},
        },
        ["stepId", "stepTitle"],
    ),
    _function(
        "show_next_content",
        "Reveal the next content block of the current step when you are ready to talk about it.",
        {"reason": {"type": "string", "description": "Why you are revealing the next block"}},
        ["reason"],
    ),
    _function(
        "complete_step",
        "Mark a step as finished once the student has understood it.",
        {"stepId": {"type": "string", "description": "The step ID being completed"}},
        ["stepId"],
    ),
    _function(
        "complete_lesson",
        "Call once when the whole lesson is finished.",
        {"summary": {"type": "string", "description": "One or two sentence recap for the student"}},
        ["summary"],
    ),
]

CONTENT_TOOLS = [
    _function(
        "show_table",
        "Display an ADDITIONAL table that is not already part of the lesson content.",
        {
            "id": {"type": "string", "description": "Unique ID for this table"},
            "headers": {"type": "array", "items": {"type": "string"}},
            "rows": {
                "type": "array",
                "items": {"type": "array", "items": {"type": "string"}},
                "description": "Array of rows, each row is an array of cell values",
            },
        },
        ["id", "headers", "rows"],
    ),
    _function(
        "show_definition",
        "Display an ADDITIONAL definition card for a key term.",
        {
            "id": {"type": "string", "description": "Unique ID for this definition"},
            "term": {"type": "string"},
            "definition": {"type": "string"},
            "example": {"type": "string", "description": "Optional example"},
        },
        ["id", "term", "definition"],
    ),
    _function(
        "show_quote_analysis",
        "Display a quotation with its analysis (language techniques and effect).",
        {
            "id": {"type": "string", "description": "Unique ID for this analysis"},
            "quote": {"type": "string"},
            "source": {"type": "string", "description": "Text and speaker the quote is from"},
            "analysis": {"type": "string"},
            "techniques": {"type": "array", "items": {"type": "string"}},
        },
        ["id", "quote", "analysis"],
    ),
    _function(
        "ask_question",
        "Present an ADDITIONAL multiple-choice practice question.",
        {
            "id": {"type": "string"},
            "question": {"type": "string"},
            "options": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "text": {"type": "string"},
                        "isCorrect": {"type": "boolean"},
                    },
                    "required": ["id", "text", "isCorrect"],
                },
            },
            "explanation": {"type": "string", "description": "Shown after answering"},
        },
        ["id", "question", "options"],
    ),
]

SPEED_TOOL = _function(
    "change_speed",
    "Speak slower or faster when the student asks you to.",
    {"direction": {"type": "string", "enum": ["slower", "faster"]}},
    ["direction"],
)


# =============================================================================
# Assembler
# =============================================================================


@dataclass(frozen=True)
class PromptContext:
    """Session context the prompt is built from."""

    learner_name: str = "there"
    lesson_plan: LessonPlan | None = None
    topic: str | None = None
    year_group: str | None = None


def _describe_block(block: ContentBlock) -> str:
    data = block.data
    if block.type == "text":
        line = f"Text: \"{str(data.get('content', ''))[:100]}\""
    elif block.type == "definition":
        line = f"Definition: \"{data.get('term', 'Unknown')}\""
    elif block.type == "question":
        line = f"Question: \"{str(data.get('question', ''))[:80]}\""
    elif block.type == "table":
        headers = ", ".join(str(h) for h in data.get("headers") or [])
        line = f"Table: {headers} ({len(data.get('rows') or [])} rows)"
    else:
        line = f"{block.type}: {block.title or block.id}"

    if block.title:
        line = f"{block.title} ({line})"
    if block.teaching_notes:
        line += f"\n      Teaching note: {block.teaching_notes}"
    return f"   - {line} [ID: {block.id}]"


class PromptAssembler:
    """Builds provider session configuration for one session."""

    def __init__(self, settings: SessionSettings | None = None) -> None:
        self.settings = settings or SessionSettings()

    def build_instructions(self, context: PromptContext) -> str:
        plan = context.lesson_plan
        if plan is not None:
            return self._lesson_plan_instructions(plan)
        if context.topic:
            return self._topic_instructions(context.topic, context.year_group)
        return (
            f"You are {TUTOR_NAME}, a friendly AI tutor. Help the student learn by asking "
            "questions and providing clear explanations. Keep responses brief and conversational."
        )

    def _lesson_plan_instructions(self, plan: LessonPlan) -> str:
        style = get_teaching_style(plan.subject, plan.difficulty_tier)
        objectives = "\n".join(f"{i}. {o}" for i, o in enumerate(plan.learning_objectives, 1))
        sequence_lines = []
        library_lines = []
        for i, step in enumerate(plan.steps, 1):
            minutes = f" ({step.duration_minutes}min)" if step.duration_minutes else ""
            sequence_lines.append(f"Step {i}: {step.title}{minutes} [ID: {step.id}]")
            if step.blocks:
                library_lines.append(f"\n{step.title} [ID: {step.id}]:")
                library_lines.extend(_describe_block(b) for b in step.blocks)

        audience = f" to a {plan.year_group} student" if plan.year_group else ""
        first = plan.first_step
        parts = [
            f"You are {TUTOR_NAME}, an expert AI tutor teaching {plan.topic}{audience}.",
            f"Level: {normalize_tier(plan.difficulty_tier).upper()} ({style.grade_range})",
        ]
        if objectives:
            parts.append(f"LEARNING OBJECTIVES:\n{objectives}")
        parts.append("LESSON STRUCTURE:\n" + "\n".join(sequence_lines))
        if library_lines:
            parts.append(
                "LESSON CONTENT (revealed one block at a time):" + "\n".join(library_lines)
            )
        parts.append(
            "HOW TO TEACH:\n"
            "1. Before teaching each step, call move_to_step with the step's ID and title. "
            "This shows the first block of the step.\n"
            "2. Call show_next_content when you are ready to talk about the next block.\n"
            "3. Reference content after it appears. Do not recreate content that already exists.\n"
            "4. Call complete_step when a step is understood, and complete_lesson at the end.\n"
            "5. Use show_table, show_definition, show_quote_analysis and ask_question only for "
            "extra material.\n"
            + (f"6. The first step is {first.title} [ID: {first.id}] and is already on screen." if first else "")
        )
        parts.append(
            "TEACHING STYLE:\n"
            f"- {style.pacing}\n- {style.scaffolding}\n- {style.explanation_focus}\n"
            "- Be warm and engaging; explain concepts in 2-3 sentences.\n"
            "- If asked to speak slower or faster, call change_speed."
        )
        return "\n\n".join(part for part in parts if part)

    def _topic_instructions(self, topic: str, year_group: str | None) -> str:
        audience = f" to a {year_group} student" if year_group else ""
        style = get_teaching_style(topic, None)
        return (
            f"You are {TUTOR_NAME}, a friendly and encouraging AI tutor teaching {topic}{audience}.\n\n"
            "You have visual content tools that display information to the student:\n"
            "- show_table: tabular data with headers and rows\n"
            "- show_definition: a definition card for key terms\n"
            "- show_quote_analysis: a quotation with its analysis\n"
            "- ask_question: an interactive multiple-choice question\n\n"
            "Teaching style:\n"
            "- USE YOUR TOOLS to show visual content instead of just describing it\n"
            "- After showing a question, wait for the student's answer before continuing\n"
            f"- {style.explanation_focus}\n"
            "- If asked to speak slower or faster, call change_speed\n\n"
            "Keep spoken responses conversational and under 3 sentences unless explaining "
            "something complex."
        )

    def build_tools(self, context: PromptContext) -> list[dict[str, Any]]:
        """Tool schemas offered to the provider."""
        tools: list[dict[str, Any]] = []
        if context.lesson_plan is not None:
            tools.extend(STEP_TOOLS)
        tools.extend(CONTENT_TOOLS)
        tools.append(SPEED_TOOL)
        return tools

    def build_greeting(self, context: PromptContext) -> str:
        """Text of the synthetic opening turn that makes the tutor speak first."""
        name = context.learner_name
        plan = context.lesson_plan
        if plan is not None:
            objectives = ", and ".join(plan.learning_objectives[:2])
            first = plan.first_step.title if plan.first_step else "the basics"
            count = len(plan.learning_objectives)
            objective_text = (
                f" We have {count} main objective{'s' if count != 1 else ''}: {objectives}."
                if count
                else ""
            )
            return (
                f"Hi {name}! Welcome! I'm {TUTOR_NAME}, and I'll be guiding you through "
                f"{plan.topic} today.{objective_text} Let's get started with {first}. Are you ready?"
            )
        if context.topic:
            return (
                f"Hi {name}! I'm {TUTOR_NAME}, your AI tutor. I'm excited to help you learn about "
                f"{context.topic} today! What would you like to explore first?"
            )
        return (
            f"Hi {name}! I'm {TUTOR_NAME}, your AI tutor. I'm here to help you learn. "
            "What would you like to study today?"
        )

    def build_session_update(self, context: PromptContext) -> dict[str, Any]:
        """session.update event configuring the provider session."""
        return {
            "type": ProviderEventType.SESSION_UPDATE,
            "session": {
                "modalities": ["text", "audio"],
                "instructions": self.build_instructions(context),
                "voice": self.settings.voice,
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {"model": self.settings.transcription_model},
                "turn_detection": dict(TURN_DETECTION),
                "tools": self.build_tools(context),
                "tool_choice": "auto",
                "temperature": self.settings.temperature,
                "max_response_output_tokens": MAX_RESPONSE_OUTPUT_TOKENS,
            },
        }

    def build_deep_explanation_instructions(
        self, question: str, history: list[tuple[str, str]]
    ) -> str:
        """Instructions for the full model after a confused student turn.

        Args:
            question: The student's turn that triggered the switch
            history: Recent (role, content) pairs, oldest first
        """
        speakers = {"user": "Student", "assistant": TUTOR_NAME}
        transcript = "\n".join(
            f"{speakers.get(role, role.capitalize())}: {content}"
            for role, content in history
            if role in speakers
        )
        return (
            f"You are {TUTOR_NAME} in DEEP EXPLANATION MODE. The student just asked for help "
            f'because they were confused: "{question}"\n\n'
            f"Previous conversation:\n{transcript}\n\n"
            "Provide a thorough, detailed explanation using:\n"
            "- Analogies and real-world examples\n"
            "- Step-by-step breakdowns\n"
            "- Multiple perspectives\n"
            "- Visual descriptions\n\n"
            'After your explanation, ask "Does that make sense now?" to gauge understanding.'
        )

    def build_deep_explanation_update(
        self, context: PromptContext, question: str, history: list[tuple[str, str]]
    ) -> dict[str, Any]:
        """session.update for a freshly opened full-model channel.

        Keeps the tools and audio settings of the regular session so lesson
        navigation still works while explaining.
        """
        update = self.build_session_update(context)
        update["session"]["instructions"] = self.build_deep_explanation_instructions(question, history)
        return update

    @staticmethod
    def build_speed_update(speed: float) -> dict[str, Any]:
        return {"type": ProviderEventType.SESSION_UPDATE, "session": {"speed": speed}}

    @staticmethod
    def build_user_turn(text: str) -> dict[str, Any]:
        """conversation.item.create carrying a text user turn."""
        return {
            "type": ProviderEventType.CONVERSATION_ITEM_CREATE,
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        }

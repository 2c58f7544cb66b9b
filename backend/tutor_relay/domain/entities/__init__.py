"""Domain entities - objects with identity."""

from .lesson import ContentBlock, ContentBlockType, LessonPlan, LessonStep
from .session import VoiceSession

__all__ = ["ContentBlock", "ContentBlockType", "LessonPlan", "LessonStep", "VoiceSession"]

"""Domain services - orchestration and business logic."""

from .admission import (
    Admission,
    AdmissionDenied,
    AdmissionRequest,
    AdmissionService,
)
from .barge_in import (
    BargeInAction,
    BargeInHandler,
    BargeInResult,
)
from .content_sequencer import (
    ContentSequencer,
    SequencerResult,
)
from .prompt_assembler import (
    PromptAssembler,
    PromptContext,
    TeachingStyle,
    get_teaching_style,
)
from .protocol_translator import (
    ProtocolTranslator,
    detect_confusion,
)
from .quota_accounting import (
    QuotaBalance,
    apply_charge,
    minutes_to_charge,
)
from .session_controller import (
    CloseReason,
    SessionController,
)
from .tool_dispatcher import (
    ToolArgumentError,
    ToolDispatcher,
    ToolOutcome,
    UnknownToolError,
)

__all__ = [
    "Admission",
    "AdmissionDenied",
    "AdmissionRequest",
    "AdmissionService",
    "BargeInHandler",
    "BargeInResult",
    "BargeInAction",
    "ContentSequencer",
    "SequencerResult",
    "PromptAssembler",
    "PromptContext",
    "TeachingStyle",
    "get_teaching_style",
    "ProtocolTranslator",
    "detect_confusion",
    "QuotaBalance",
    "apply_charge",
    "minutes_to_charge",
    "CloseReason",
    "SessionController",
    "ToolDispatcher",
    "ToolOutcome",
    "ToolArgumentError",
    "UnknownToolError",
]

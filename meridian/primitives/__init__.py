# primitives/__init__.py
# 核心数据模型与进度事件 / Core data models & progress events

from meridian.primitives.events import SynthesisEvent
from meridian.primitives.models import (
    ArchetypeProfile,
    Completion,
    ConversationState,
    DimensionalScore,
    EnhancedResult,
    KeyTheme,
    MeaningfulQuote,
    ModelUsage,
    ParticipantContext,
    PillarScore,
    ReadinessAssessment,
    Recommendation,
    ReflectionState,
    ReflectionTurn,
    StakeholderPerspective,
    StakeholderTranscript,
    TurnResult,
    Utterance,
)

__all__ = [
    "ArchetypeProfile",
    "Completion",
    "ConversationState",
    "DimensionalScore",
    "EnhancedResult",
    "KeyTheme",
    "MeaningfulQuote",
    "ModelUsage",
    "ParticipantContext",
    "PillarScore",
    "ReadinessAssessment",
    "Recommendation",
    "ReflectionState",
    "ReflectionTurn",
    "StakeholderPerspective",
    "StakeholderTranscript",
    "SynthesisEvent",
    "TurnResult",
    "Utterance",
]

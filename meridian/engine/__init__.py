# engine/__init__.py
# =============================================================================
# Meridian 引擎模块: 回合处理、计分、反思与组织级汇总。
# =============================================================================

from meridian.engine.interview import InterviewEngine
from meridian.engine.reflection import ReflectionEngine
from meridian.engine.scoring import ScoringEngine, score_interview
from meridian.engine.selection import Selection, parse_selection
from meridian.engine.synthesis import ProgressCallback, SynthesisEngine
from meridian.engine.turns import PhaseRule, PhaseTable, TurnProcessor

__all__ = [
    "InterviewEngine",
    "PhaseRule",
    "PhaseTable",
    "ProgressCallback",
    "ReflectionEngine",
    "ScoringEngine",
    "Selection",
    "SynthesisEngine",
    "TurnProcessor",
    "parse_selection",
    "score_interview",
]

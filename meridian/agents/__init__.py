# agents/__init__.py
# =============================================================================
# Meridian Agent 模块: 个性化增强、维度分析与报告撰写。 / Enhancement, dimension analysis & report writing.
# =============================================================================

from .analyst import DimensionAnalyst, LabelledTranscript, ReportWriter
from .enhancement import EnhancementSynthesizer, synthesize_enhancement

__all__ = [
    "DimensionAnalyst",
    "EnhancementSynthesizer",
    "LabelledTranscript",
    "ReportWriter",
    "synthesize_enhancement",
]

# meridian/__init__.py
# =============================================================================
# Meridian: AI 引导的结构化访谈与组织评估引擎。 / AI-guided interview & organisational assessment engine.
# =============================================================================

"""Meridian: AI 引导的结构化访谈与组织评估引擎。 / AI-guided interview & organisational assessment engine."""

from meridian.api.sessions import AssessmentService

__version__ = "0.1.0"
__all__ = ["AssessmentService", "__version__"]

# api/__init__.py
# =============================================================================
# Meridian 公共 API。
# =============================================================================

from meridian.api.sessions import AssessmentService

__all__ = ["AssessmentService"]

# errors.py
# =============================================================================
# 评估引擎错误定义 / Assessment engine error taxonomy
#
# 每个错误携带 / Every error carries:
#   - code: 稳定的错误码，供调用方分支处理 / stable code for caller branching
#   - user_message: 可直接展示给参与者的文案 / participant-safe message
#   - retryable: 是否可以原样重试 / whether the same request may be retried
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Optional


# -----------------------------------------------------------------------------
# 错误码 / Error codes
# -----------------------------------------------------------------------------
MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
USAGE_LIMIT_EXCEEDED = "USAGE_LIMIT_EXCEEDED"
INCOMPLETE_INTERVIEW = "INCOMPLETE_INTERVIEW"
SCRIPT_VERSION_MISMATCH = "SCRIPT_VERSION_MISMATCH"
INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
RESULTS_NOT_READY = "RESULTS_NOT_READY"
ALREADY_COMPLETE = "ALREADY_COMPLETE"
ENHANCEMENT_FAILED = "ENHANCEMENT_FAILED"
TRANSCRIPT_INVALID = "TRANSCRIPT_INVALID"


class MeridianError(Exception):
    """引擎错误基类: 携带错误码与诊断信息。 / Base engine error with code and diagnostics."""

    code = "MERIDIAN_ERROR"
    default_user_message = "Something went wrong. Please try again."
    retryable = False

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.message = message
        self.user_message = user_message or self.default_user_message
        if retryable is not None:
            self.retryable = retryable
        super().__init__(f"[{self.code}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
        }


class ModelUnavailable(MeridianError):
    """语言模型调用失败或超时。会话状态不变，可重试。"""

    code = MODEL_UNAVAILABLE
    default_user_message = (
        "The assistant is temporarily unavailable. Please try again in a moment."
    )
    retryable = True


class UsageLimitExceeded(MeridianError):
    """租户用量已达上限，模型请求被拒绝。"""

    code = USAGE_LIMIT_EXCEEDED
    default_user_message = (
        "Usage limit reached. Please upgrade your plan or wait for your "
        "next billing cycle."
    )

    def __init__(self, message: str, detail: Optional[Any] = None) -> None:
        self.detail = detail
        super().__init__(message)


class IncompleteInterview(MeridianError):
    """访谈回答数不足以评分。"""

    code = INCOMPLETE_INTERVIEW
    default_user_message = "The interview is not finished yet."


class ScriptVersionMismatch(IncompleteInterview):
    """会话使用的题本版本与当前加载的题本不一致。"""

    code = SCRIPT_VERSION_MISMATCH
    default_user_message = (
        "This interview was recorded with a different question set and "
        "cannot be scored."
    )


class InsufficientData(MeridianError):
    """没有可用于汇总的已完成访谈。"""

    code = INSUFFICIENT_DATA
    default_user_message = (
        "Not enough completed interviews to generate a report yet."
    )


class ResultsNotReady(MeridianError):
    """反思前置条件不满足（访谈未完成或无结果）。"""

    code = RESULTS_NOT_READY
    default_user_message = "Your results are not ready yet."


class AlreadyComplete(MeridianError):
    """会话已结束，不再接受新的回合。"""

    code = ALREADY_COMPLETE
    default_user_message = "This conversation has already finished."


class EnhancementFailed(MeridianError):
    """个性化增强失败。基础结果仍然有效。"""

    code = ENHANCEMENT_FAILED
    default_user_message = (
        "We could not personalise your results right now. Your core results "
        "are unaffected."
    )
    retryable = True


class TranscriptParseError(MeridianError):
    """访谈记录格式不合法。"""

    code = TRANSCRIPT_INVALID
    default_user_message = "A transcript could not be read."

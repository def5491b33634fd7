# events.py
# =============================================================================
# 汇总进度事件: 供外部应用实时获取组织级汇总的进度。
# =============================================================================

"""Synthesis progress events for external integration."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class SynthesisEvent:
    """组织级汇总过程中的结构化进度事件。

    外部应用通过注册 on_progress 回调来接收此类事件，
    实现进度条、WebSocket 推送等集成场景。

    Attributes:
        type: 事件类型。
            - "phase_start": 阶段开始
            - "phase_end": 阶段结束
            - "transcript_skipped": 某条访谈记录被排除
            - "dimension_scored": 某个维度完成评分
        phase: 当前阶段 ("VALIDATE" | "ANALYZE" | "AGGREGATE" | "REPORT")。
        run_id: 本次汇总的唯一标识。
        timestamp: 事件产生时的单调时钟（秒）。
        progress: 总进度 (0.0 ~ 1.0)。
        dimension_id: 相关维度标识，仅 dimension_scored 有效。
        detail: 事件附加数据，结构因 type 而异。
    """

    type: str
    phase: str
    run_id: str
    timestamp: float = field(default_factory=time.monotonic)
    progress: float = 0.0
    dimension_id: Optional[str] = None
    detail: Optional[Dict[str, Any]] = None

# models.py
# =============================================================================
# 本模块定义评估引擎的所有核心数据模型。
# 包含：Utterance、ConversationState、ReflectionState、ArchetypeProfile、
#       EnhancedResult、StakeholderTranscript、ReadinessAssessment 等
#       不可变/可序列化结构。
#
# 状态对象一律 frozen：引擎通过 dataclasses.replace 返回新实例，
# 调用方负责持久化。
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from meridian.errors import TranscriptParseError

USER = "user"
ASSISTANT = "assistant"
SYSTEM = "system"
UTTERANCE_ROLES = (USER, ASSISTANT, SYSTEM)

STATUS_COMPLETED = "completed"
STATUS_INCOMPLETE = "incomplete"


# =============================================================================
# 对话基础结构
# =============================================================================


@dataclass(frozen=True)
class Utterance:
    """对话中的一条发言。timestamp 由持久化层写入，引擎不填充。"""

    role: str  # user / assistant / system
    content: str
    timestamp: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role not in UTTERANCE_ROLES:
            raise ValueError(f"未知的发言角色: '{self.role}'")
        if not isinstance(self.content, str):
            raise ValueError("发言内容必须为字符串")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Utterance:
        if not isinstance(data, dict):
            raise ValueError(f"发言必须为字典，实际类型: {type(data).__name__}")
        return cls(
            role=data.get("role", ""),
            content=data.get("content"),
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True)
class ModelUsage:
    """单次（或累计）模型调用的 token 用量。"""

    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def combine(self, other: ModelUsage) -> ModelUsage:
        return ModelUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            model=other.model or self.model,
        )


@dataclass(frozen=True)
class Completion:
    """适配器返回值：文本 + 用量。"""

    text: str
    usage: ModelUsage = field(default_factory=ModelUsage)


@dataclass(frozen=True)
class ParticipantContext:
    """一次会话的参与者上下文（租户、称呼、自定义开场/结束语）。"""

    tenant_id: str
    participant_name: Optional[str] = None
    facilitator_name: Optional[str] = None
    welcome_message: Optional[str] = None
    completion_message: Optional[str] = None


# =============================================================================
# 会话状态
# =============================================================================


@dataclass(frozen=True)
class ConversationState:
    """访谈会话状态。

    phase 是持久化的事实，而不是从消息条数推导出来的；
    turn_index 为已回答的题目数；responses 按回答顺序记录原文。
    """

    phase: str
    turn_index: int = 0
    responses: Tuple[str, ...] = ()
    is_complete: bool = False
    script_version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "turn_index": self.turn_index,
            "responses": list(self.responses),
            "is_complete": self.is_complete,
            "script_version": self.script_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ConversationState:
        return cls(
            phase=data["phase"],
            turn_index=int(data.get("turn_index", 0)),
            responses=tuple(data.get("responses", ())),
            is_complete=bool(data.get("is_complete", False)),
            script_version=str(data.get("script_version", "")),
        )


@dataclass(frozen=True)
class ReflectionState:
    """反思会话状态。phase == completed 当且仅当 is_complete。"""

    phase: str = "opening"
    exchange_count: int = 0
    is_complete: bool = False

    def __post_init__(self) -> None:
        if self.exchange_count < 0:
            raise ValueError("exchange_count 不能为负数")
        if (self.phase == "completed") != self.is_complete:
            raise ValueError(
                f"反思状态不一致: phase={self.phase}, "
                f"is_complete={self.is_complete}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ReflectionState:
        return cls(
            phase=data.get("phase", "opening"),
            exchange_count=int(data.get("exchange_count", 0)),
            is_complete=bool(data.get("is_complete", False)),
        )


# =============================================================================
# 个人结果
# =============================================================================


@dataclass(frozen=True)
class ArchetypeProfile:
    """原型画像: 访谈完成时一次性计算，之后不再修改。

    is_aligned 在构造时由两个 arg-max 推导，不接受外部传入。
    friction_scores = default - authentic（仅在不一致时填充）。
    drain_scores 为"消耗信号"题组的计分，描述当前最耗能的模式。
    unscored_questions 记录回答无法解析、未计分的题目 id。
    """

    default_scores: Dict[str, int]
    authentic_scores: Dict[str, int]
    default_archetype: str
    authentic_archetype: str
    friction_scores: Dict[str, int] = field(default_factory=dict)
    drain_scores: Dict[str, int] = field(default_factory=dict)
    tension_description: Optional[str] = None
    script_version: str = ""
    unscored_questions: Tuple[str, ...] = ()
    is_aligned: bool = field(init=False)

    def __post_init__(self) -> None:
        if not self.default_scores or not self.authentic_scores:
            raise ValueError("原型分数向量不能为空")
        if set(self.default_scores) != set(self.authentic_scores):
            raise ValueError("default 与 authentic 分数必须基于同一原型目录")
        for key in (self.default_archetype, self.authentic_archetype):
            if key not in self.default_scores:
                raise ValueError(f"未知原型: '{key}'")
        object.__setattr__(
            self,
            "is_aligned",
            self.default_archetype == self.authentic_archetype,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ArchetypeProfile:
        return cls(
            default_scores=dict(data["default_scores"]),
            authentic_scores=dict(data["authentic_scores"]),
            default_archetype=data["default_archetype"],
            authentic_archetype=data["authentic_archetype"],
            friction_scores=dict(data.get("friction_scores") or {}),
            drain_scores=dict(data.get("drain_scores") or {}),
            tension_description=data.get("tension_description"),
            script_version=data.get("script_version", ""),
            unscored_questions=tuple(data.get("unscored_questions") or ()),
        )


@dataclass(frozen=True)
class MeaningfulQuote:
    quote: str
    context: str = ""


@dataclass(frozen=True)
class EnhancedResult:
    """个性化增强结果: 叠加在原始画像之上，不修改 profile。"""

    profile: ArchetypeProfile
    default_narrative: str
    authentic_narrative: str
    tension_insights: Optional[str]
    themes: Tuple[str, ...]
    guidance: str
    quotes: Tuple[MeaningfulQuote, ...]
    enhanced_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# 跨参与者汇总
# =============================================================================


@dataclass(frozen=True)
class StakeholderTranscript:
    """单个利益相关者的访谈记录。"""

    role: str
    status: str
    history: Tuple[Utterance, ...]
    participant: Optional[str] = None
    session_ref: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return self.status == STATUS_COMPLETED and bool(self.history)

    def user_utterances(self) -> List[str]:
        return [u.content for u in self.history if u.role == USER]

    @classmethod
    def from_dict(cls, data: Any) -> StakeholderTranscript:
        """从原始映射构建，格式不合法时抛出 TranscriptParseError。"""
        if not isinstance(data, dict):
            raise TranscriptParseError(
                f"transcript must be a mapping, got {type(data).__name__}"
            )
        role = data.get("role")
        if not isinstance(role, str) or not role:
            raise TranscriptParseError("transcript is missing a role")
        status = data.get("status", STATUS_INCOMPLETE)
        raw_history = data.get("history")
        if raw_history is None:
            raw_history = []
        if not isinstance(raw_history, (list, tuple)):
            raise TranscriptParseError("transcript history must be a list")
        try:
            history = tuple(
                u if isinstance(u, Utterance) else Utterance.from_dict(u)
                for u in raw_history
            )
        except (ValueError, TypeError) as exc:
            raise TranscriptParseError(
                f"transcript history is malformed: {exc}"
            ) from exc
        return cls(
            role=role,
            status=str(status),
            history=history,
            participant=data.get("participant"),
            session_ref=data.get("session_ref"),
        )


@dataclass(frozen=True)
class DimensionalScore:
    id: str
    name: str
    score: float  # 0.0 ~ 5.0
    confidence: str  # high / medium / low / insufficient
    key_findings: Tuple[str, ...] = ()
    supporting_quotes: Tuple[str, ...] = ()
    gap_to_next: str = ""
    evidence_count: int = 0


@dataclass(frozen=True)
class PillarScore:
    id: str
    name: str
    score: float
    weight: float
    dimensions: Tuple[DimensionalScore, ...]


@dataclass(frozen=True)
class KeyTheme:
    theme: str
    stakeholders: Tuple[str, ...]  # 支撑该主题的访谈标签


@dataclass(frozen=True)
class Recommendation:
    dimension_id: str
    dimension: str
    pillar: str
    score: float
    priority: str  # critical / important / foundational / opportunistic
    text: str


@dataclass(frozen=True)
class StakeholderPerspective:
    label: str
    role: str
    role_name: str
    participant: Optional[str]
    key_concerns: Tuple[str, ...]
    notable_quotes: Tuple[str, ...]


@dataclass(frozen=True)
class ReadinessAssessment:
    """组织级评估报告。"""

    taxonomy: str
    taxonomy_version: str
    overall_score: float
    pillars: Tuple[PillarScore, ...]
    key_themes: Tuple[KeyTheme, ...]
    contradictions: Tuple[str, ...]
    recommendations: Tuple[Recommendation, ...]
    executive_summary: str
    stakeholder_perspectives: Tuple[StakeholderPerspective, ...]
    transcripts_used: int
    warnings: Tuple[str, ...] = ()
    generated_at: str = ""

    def dimension(self, dimension_id: str) -> Optional[DimensionalScore]:
        for pillar in self.pillars:
            for dim in pillar.dimensions:
                if dim.id == dimension_id:
                    return dim
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# 回合结果
# =============================================================================


@dataclass(frozen=True)
class TurnResult:
    """一次访谈回合的输出。utterances 为本回合新增的发言（按顺序）。"""

    reply: Utterance
    state: Any
    usage: ModelUsage
    utterances: Tuple[Utterance, ...]


@dataclass(frozen=True)
class ReflectionTurn:
    """一次反思回合的输出。degraded 列出降级的子操作（如 enhancement）。"""

    reply: Utterance
    state: ReflectionState
    usage: ModelUsage
    utterances: Tuple[Utterance, ...]
    enhanced: Optional[EnhancedResult] = None
    degraded: Tuple[str, ...] = ()

# sessions.py
# =============================================================================
# 公共 API: 评估会话入口。
#
# AssessmentService 每个进程构造一次，持有模型路由、用量守卫以及
# 原型目录 / 题本 / 分类体系；每次调用按租户创建绑定好的模型调用函数，
# 再交给对应的引擎。引擎本身不持有跨请求状态。
#
# 所有方法都是纯粹的"输入状态 → 输出状态"，持久化由调用方负责。
# =============================================================================

"""公共 API: 评估会话入口。"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

from meridian.agents.enhancement import EnhancementSynthesizer
from meridian.catalog.loader import (
    ArchetypeCatalog,
    QuestionScript,
    ReadinessTaxonomy,
    default_archetypes,
    default_taxonomy,
)
from meridian.engine.interview import InterviewEngine
from meridian.engine.reflection import ReflectionEngine
from meridian.engine.scoring import ScoringEngine
from meridian.engine.synthesis import ProgressCallback, SynthesisEngine
from meridian.llm.caller import make_model_caller
from meridian.llm.config import (
    ROLE_ENHANCEMENT,
    ROLE_INTERVIEWER,
    ROLE_REFLECTION,
    ROLE_SYNTHESIS,
)
from meridian.llm.usage import UsageGuard
from meridian.primitives.models import (
    ArchetypeProfile,
    ConversationState,
    EnhancedResult,
    ParticipantContext,
    ReadinessAssessment,
    ReflectionState,
    ReflectionTurn,
    TurnResult,
    Utterance,
)
from meridian.sources import TranscriptSource, collect_transcripts

logger = logging.getLogger(__name__)


class AssessmentService:
    """评估引擎的公共入口。 / Public entry point of the assessment engine."""

    def __init__(
        self,
        router,
        guard: Optional[UsageGuard] = None,
        catalog: Optional[ArchetypeCatalog] = None,
        script: Optional[QuestionScript] = None,
        taxonomy: Optional[ReadinessTaxonomy] = None,
    ) -> None:
        """初始化服务。

        Args:
            router: ModelRouter（或任何提供 get_adapter(role) 的对象）。
            guard: 租户用量守卫；不传则不限制。
            catalog / script: 原型目录与题本；不传使用随包发布的默认配置。
            taxonomy: 组织级汇总使用的分类体系；不传使用 industry_4_0。
        """
        if catalog is None or script is None:
            default_catalog, default_script = default_archetypes()
            catalog = catalog or default_catalog
            script = script or default_script
        self.router = router
        self.guard = guard or UsageGuard()
        self.catalog = catalog
        self.script = script
        self.taxonomy = taxonomy or default_taxonomy()
        self._scoring = ScoringEngine(catalog=catalog, script=script)

    def _caller(self, role: str, tenant_id: str):
        return make_model_caller(self.router, self.guard, role, tenant_id)

    def _interview(self, tenant_id: str) -> InterviewEngine:
        return InterviewEngine(
            self._caller(ROLE_INTERVIEWER, tenant_id),
            script=self.script, catalog=self.catalog,
        )

    def _enhancer(self, tenant_id: str) -> EnhancementSynthesizer:
        return EnhancementSynthesizer(
            self._caller(ROLE_ENHANCEMENT, tenant_id), catalog=self.catalog,
        )

    # ------------------------------------------------------------------
    # 访谈
    # ------------------------------------------------------------------

    async def start_session(self, context: ParticipantContext) -> TurnResult:
        """开场：生成问候与第一题，返回初始状态。"""
        logger.info(f"租户 {context.tenant_id} 开始新的访谈会话 (题本 v{self.script.version})")
        return await self._interview(context.tenant_id).process_turn(
            None, None, [], context,
        )

    async def advance_session(
        self,
        incoming: Union[Utterance, str],
        state: ConversationState,
        history: Sequence[Utterance],
        context: ParticipantContext,
    ) -> TurnResult:
        """推进一个访谈回合。失败时调用方持有的 state / history 不变。"""
        return await self._interview(context.tenant_id).process_turn(
            incoming, state, history, context,
        )

    def complete_interview(
        self,
        history: Sequence[Utterance],
        state: Optional[ConversationState] = None,
    ) -> ArchetypeProfile:
        """计算原型画像。传入 state 时校验题本版本。"""
        version = state.script_version if state is not None else None
        return self._scoring.score(history, script_version=version)

    # ------------------------------------------------------------------
    # 反思与增强
    # ------------------------------------------------------------------

    async def start_or_continue_reflection(
        self,
        incoming: Optional[Union[Utterance, str]],
        state: Optional[ReflectionState],
        history: Sequence[Utterance],
        profile: Optional[ArchetypeProfile],
        interview_status: Optional[str],
        context: ParticipantContext,
    ) -> ReflectionTurn:
        """开始（state 为 None）或继续反思对话。

        Raises:
            ResultsNotReady: 访谈未完成或没有画像。
            AlreadyComplete: 反思已结束。
        """
        engine = ReflectionEngine(
            self._caller(ROLE_REFLECTION, context.tenant_id),
            profile,
            interview_status=interview_status,
            catalog=self.catalog,
            enhancer=self._enhancer(context.tenant_id),
        )
        return await engine.process_turn(incoming, state, history, context)

    async def synthesize_participant(
        self,
        profile: ArchetypeProfile,
        reflection_history: Sequence[Utterance],
        participant_name: Optional[str],
        tenant_id: str,
    ) -> EnhancedResult:
        """单独（重新）生成个性化增强，例如在降级之后重试。"""
        return await self._enhancer(tenant_id).synthesize(
            profile, reflection_history, participant_name,
        )

    # ------------------------------------------------------------------
    # 组织级汇总
    # ------------------------------------------------------------------

    async def synthesize_organization(
        self,
        transcripts: Sequence[Any],
        tenant_id: str,
        on_progress: Optional[ProgressCallback] = None,
        run_id: Optional[str] = None,
    ) -> ReadinessAssessment:
        """汇总多份访谈记录为组织级评估报告。"""
        engine = SynthesisEngine(
            self._caller(ROLE_SYNTHESIS, tenant_id),
            taxonomy=self.taxonomy,
            on_progress=on_progress,
        )
        return await engine.synthesize(transcripts, run_id=run_id)

    async def synthesize_sessions(
        self,
        source: TranscriptSource,
        session_refs: Sequence[str],
        tenant_id: str,
        on_progress: Optional[ProgressCallback] = None,
        run_id: Optional[str] = None,
    ) -> ReadinessAssessment:
        """从存储中取出访谈记录再汇总。获取失败的记录写入报告的 warnings。

        Raises:
            InsufficientData: 没有任何记录可用（包括全部获取失败）。
        """
        transcripts, fetch_warnings = await collect_transcripts(source, session_refs)
        engine = SynthesisEngine(
            self._caller(ROLE_SYNTHESIS, tenant_id),
            taxonomy=self.taxonomy,
            on_progress=on_progress,
        )
        return await engine.synthesize(transcripts, run_id=run_id, warnings=fetch_warnings)

"""跨参与者汇总引擎。 / Cross-participant synthesis engine.

职责 / Responsibilities:
1. VALIDATE: 逐条校验访谈记录，不合法 / 未完成的记录跳过并写入 warnings
2. ANALYZE: 每个维度一次模型调用，按角色权重计算维度分与置信度
3. AGGREGATE: 按分类体系声明的聚合方式计算支柱分与总分
4. REPORT: 主题、矛盾、建议与执行摘要；利益相关者视角为确定性抽取

模型不可用与额度不足向上传播；报告阶段的解析失败降级为空值并记录警告。
完成率（已完成 / 邀请数）由调用方计算，本引擎只报告 transcripts_used。
"""

import asyncio
import inspect
import logging
import re
import statistics
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from meridian.agents.analyst import (
    DimensionAnalysis,
    DimensionAnalyst,
    LabelledTranscript,
    ReportDraft,
    ReportWriter,
    format_transcripts,
)
from meridian.catalog.loader import Pillar, ReadinessTaxonomy, default_taxonomy
from meridian.errors import InsufficientData, TranscriptParseError
from meridian.primitives.events import SynthesisEvent
from meridian.primitives.models import (
    DimensionalScore,
    KeyTheme,
    PillarScore,
    ReadinessAssessment,
    Recommendation,
    StakeholderPerspective,
    StakeholderTranscript,
)

logger = logging.getLogger(__name__)

# 类型别名：支持同步和异步回调 / Type alias: supports sync and async callbacks
ProgressCallback = Union[
    Callable[[SynthesisEvent], Awaitable[None]],
    Callable[[SynthesisEvent], None],
]

CONFIDENCE_INSUFFICIENT = "insufficient"
MIN_THEME_SOURCES = 2

# 利益相关者视角的抽取阈值
CONCERN_MIN_CHARS = 50
MAX_CONCERNS = 3
QUOTE_MIN_CHARS = 100
QUOTE_MAX_CHARS = 500
MAX_QUOTES = 2

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def confidence_for(count: int) -> str:
    """按贡献信号的访谈数给出置信度。"""
    if count >= 4:
        return "high"
    if count >= 2:
        return "medium"
    if count == 1:
        return "low"
    return CONFIDENCE_INSUFFICIENT


def priority_for(score: float) -> str:
    if score < 1.5:
        return "critical"
    if score < 2.5:
        return "important"
    if score < 3.5:
        return "foundational"
    return "opportunistic"


def aggregate(values: Sequence[float], method: str) -> float:
    if method == "min":
        return min(values)
    if method == "median":
        return float(statistics.median(values))
    return sum(values) / len(values)


def stakeholder_perspective(
    item: LabelledTranscript, taxonomy: ReadinessTaxonomy,
) -> StakeholderPerspective:
    """确定性抽取：关注点取长发言的首句，引文取中等长度的完整发言。"""
    messages = [m.strip() for m in item.transcript.user_utterances() if m.strip()]
    concerns = [
        _SENTENCE_END.split(m, maxsplit=1)[0]
        for m in messages if len(m) > CONCERN_MIN_CHARS
    ][:MAX_CONCERNS]
    quotes = [
        m for m in messages if QUOTE_MIN_CHARS <= len(m) <= QUOTE_MAX_CHARS
    ][:MAX_QUOTES]
    return StakeholderPerspective(
        label=item.label,
        role=item.transcript.role,
        role_name=taxonomy.role_name(item.transcript.role),
        participant=item.transcript.participant,
        key_concerns=tuple(concerns),
        notable_quotes=tuple(quotes),
    )


class SynthesisEngine:
    """组织级汇总编排器。 / Organisational synthesis orchestrator."""

    # 各阶段在总进度中的权重 / Phase weights in total progress (sum = 1.0)
    _PHASE_WEIGHTS = {
        "VALIDATE": 0.05,
        "ANALYZE": 0.70,
        "AGGREGATE": 0.05,
        "REPORT": 0.20,
    }

    def __init__(
        self,
        analyst_caller: Callable[..., Awaitable[Any]],
        taxonomy: Optional[ReadinessTaxonomy] = None,
        report_caller: Optional[Callable[..., Awaitable[Any]]] = None,
        on_progress: Optional[ProgressCallback] = None,
        max_chars_per_transcript: int = 6000,
    ):
        self.taxonomy = taxonomy or default_taxonomy()
        self._analyst = DimensionAnalyst(analyst_caller, self.taxonomy)
        self._writer = ReportWriter(report_caller or analyst_caller, self.taxonomy)
        self._on_progress = on_progress
        self._max_chars = max_chars_per_transcript
        self._phase_offsets: Dict[str, float] = {}
        offset = 0.0
        for phase in ("VALIDATE", "ANALYZE", "AGGREGATE", "REPORT"):
            self._phase_offsets[phase] = offset
            offset += self._PHASE_WEIGHTS[phase]

    async def _emit(self, event: SynthesisEvent) -> None:
        """触发进度回调（支持同步和异步回调）。 / Emit progress callback (sync and async)."""
        if self._on_progress is None:
            return
        result = self._on_progress(event)
        if inspect.isawaitable(result):
            await result

    def _progress(self, phase: str, phase_fraction: float = 0.0) -> float:
        base = self._phase_offsets.get(phase, 0.0)
        weight = self._PHASE_WEIGHTS.get(phase, 0.0)
        return min(1.0, base + weight * phase_fraction)

    # ------------------------------------------------------------------
    # VALIDATE
    # ------------------------------------------------------------------

    def _check(self, raw: Any) -> Tuple[Optional[StakeholderTranscript], Optional[str]]:
        """返回 (可用记录, None) 或 (None, 排除原因)。"""
        try:
            transcript = StakeholderTranscript.from_dict(raw) if isinstance(raw, dict) else raw
        except TranscriptParseError as exc:
            return None, f"malformed ({exc.message})"
        if not isinstance(transcript, StakeholderTranscript):
            return None, f"malformed (unsupported type {type(raw).__name__})"
        if transcript.role not in self.taxonomy.role_ids:
            return None, f"unknown role '{transcript.role}'"
        if not transcript.is_usable:
            return None, f"not usable (status '{transcript.status}', {len(transcript.history)} messages)"
        if not any(m.strip() for m in transcript.user_utterances()):
            return None, "malformed (no participant content)"
        return transcript, None

    async def _validate(
        self, transcripts: Sequence[Any], run_id: str, warnings: List[str],
    ) -> List[LabelledTranscript]:
        usable: List[StakeholderTranscript] = []
        for index, raw in enumerate(transcripts, start=1):
            transcript, reason = self._check(raw)
            if transcript is None:
                ref = raw.get("session_ref") if isinstance(raw, dict) else getattr(raw, "session_ref", None)
                message = f"Transcript #{index}{f' ({ref})' if ref else ''} excluded: {reason}"
                logger.warning(f"[{run_id}] {message}")
                warnings.append(message)
                await self._emit(SynthesisEvent(
                    type="transcript_skipped", phase="VALIDATE", run_id=run_id,
                    progress=self._progress("VALIDATE", index / len(transcripts)),
                    detail={"index": index, "reason": reason},
                ))
                continue
            usable.append(transcript)
        return [
            LabelledTranscript(label=f"S{i}", transcript=t)
            for i, t in enumerate(usable, start=1)
        ]

    # ------------------------------------------------------------------
    # ANALYZE
    # ------------------------------------------------------------------

    def score_dimension(
        self,
        dimension,
        analysis: DimensionAnalysis,
        roles: Dict[str, str],
    ) -> DimensionalScore:
        """按角色权重对各访谈的信号取加权平均。"""
        total = 0.0
        weights = 0.0
        contributing = 0
        for label, signal in analysis.signals.items():
            weight = dimension.weight_for(roles[label])
            if weight <= 0:
                continue
            total += weight * signal
            weights += weight
            contributing += 1
        confidence = confidence_for(contributing)
        score = round(total / weights, 2) if weights > 0 else 0.0
        return DimensionalScore(
            id=dimension.id,
            name=dimension.name,
            score=score,
            confidence=confidence,
            key_findings=tuple(text for text, _ in analysis.findings),
            supporting_quotes=tuple(quote for quote, _ in analysis.quotes),
            gap_to_next=analysis.gap_to_next,
            evidence_count=contributing,
        )

    async def _analyze(
        self,
        labelled: List[LabelledTranscript],
        transcripts_text: str,
        run_id: str,
        warnings: List[str],
    ) -> Dict[str, Tuple[DimensionalScore, DimensionAnalysis]]:
        pairs = self.taxonomy.iter_dimensions()
        done = await asyncio.gather(
            *(
                self._analyst.analyze(pillar, dim, labelled, transcripts_text)
                for pillar, dim in pairs
            ),
            return_exceptions=True,
        )
        for result in done:
            if isinstance(result, BaseException):
                logger.error(f"[{run_id}] 维度分析失败: {result}")
                raise result

        roles = {item.label: item.transcript.role for item in labelled}
        scored: Dict[str, Tuple[DimensionalScore, DimensionAnalysis]] = {}
        for i, ((pillar, dim), analysis) in enumerate(zip(pairs, done), start=1):
            if analysis.error:
                warnings.append(f"Dimension {dim.id} analysis could not be parsed: {analysis.error}")
            score = self.score_dimension(dim, analysis, roles)
            scored[dim.id] = (score, analysis)
            await self._emit(SynthesisEvent(
                type="dimension_scored", phase="ANALYZE", run_id=run_id,
                progress=self._progress("ANALYZE", i / len(pairs)),
                dimension_id=dim.id,
                detail={"score": score.score, "confidence": score.confidence},
            ))
        return scored

    # ------------------------------------------------------------------
    # AGGREGATE
    # ------------------------------------------------------------------

    def aggregate_pillars(
        self, scored: Dict[str, Tuple[DimensionalScore, DimensionAnalysis]],
    ) -> Tuple[Tuple[PillarScore, ...], float]:
        pillars: List[PillarScore] = []
        weighted = 0.0
        weights = 0.0
        for pillar in self.taxonomy.pillars:
            dims = tuple(scored[d.id][0] for d in pillar.dimensions)
            values = [d.score for d in dims if d.confidence != CONFIDENCE_INSUFFICIENT]
            score = round(aggregate(values, pillar.aggregation), 2) if values else 0.0
            pillars.append(PillarScore(
                id=pillar.id, name=pillar.name, score=score,
                weight=pillar.weight, dimensions=dims,
            ))
            if values:
                weighted += pillar.weight * score
                weights += pillar.weight
        overall = round(weighted / weights, 2) if weights > 0 else 0.0
        return tuple(pillars), overall

    # ------------------------------------------------------------------
    # REPORT
    # ------------------------------------------------------------------

    def order_dimensions(
        self, scored: Dict[str, Tuple[DimensionalScore, DimensionAnalysis]],
    ) -> List[Tuple[Pillar, DimensionalScore]]:
        """分数升序；并列按支柱、维度声明顺序；insufficient 排在最后。"""
        entries = []
        for position, (pillar, dim) in enumerate(self.taxonomy.iter_dimensions()):
            score = scored[dim.id][0]
            insufficient = score.confidence == CONFIDENCE_INSUFFICIENT
            entries.append(((insufficient, score.score, position), pillar, score))
        entries.sort(key=lambda e: e[0])
        return [(pillar, score) for _, pillar, score in entries]

    def build_recommendations(
        self,
        ordered: List[Tuple[Pillar, DimensionalScore]],
        scored: Dict[str, Tuple[DimensionalScore, DimensionAnalysis]],
        draft: ReportDraft,
    ) -> Tuple[Recommendation, ...]:
        recommendations = []
        for pillar, dim in ordered:
            analysis = scored[dim.id][1]
            insufficient = dim.confidence == CONFIDENCE_INSUFFICIENT
            text = draft.recommendations.get(dim.id) or dim.gap_to_next
            if not text:
                text = f"Gather more stakeholder evidence on {dim.name} before prioritising it."
            if analysis.priority:
                priority = analysis.priority
            elif insufficient:
                priority = "foundational"
            else:
                priority = priority_for(dim.score)
            recommendations.append(Recommendation(
                dimension_id=dim.id, dimension=dim.name, pillar=pillar.name,
                score=dim.score, priority=priority, text=text,
            ))
        return tuple(recommendations)

    @staticmethod
    def corroborated_themes(draft: ReportDraft) -> Tuple[KeyTheme, ...]:
        return tuple(
            KeyTheme(theme=text, stakeholders=sources)
            for text, sources in draft.themes
            if len(set(sources)) >= MIN_THEME_SOURCES
        )

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    async def synthesize(
        self,
        transcripts: Sequence[Any],
        run_id: Optional[str] = None,
        warnings: Optional[Sequence[str]] = None,
    ) -> ReadinessAssessment:
        """执行完整汇总。 / Run the full synthesis.

        Args:
            transcripts: StakeholderTranscript 或原始字典，逐条独立校验。
            run_id: 可选的外部指定 run_id。若不传则自动生成。
            warnings: 上游（例如获取访谈记录时）已产生的警告，排在本次警告之前。

        Raises:
            InsufficientData: 没有任何可用的已完成访谈。
            ModelUnavailable / UsageLimitExceeded: 模型调用失败或额度不足。
        """
        run_id = run_id or str(uuid.uuid4())[:8]
        warnings = list(warnings or ())
        logger.info(f"[{run_id}] 开始汇总 {len(transcripts)} 条访谈记录 ({self.taxonomy.name})")

        # VALIDATE
        await self._emit(SynthesisEvent(
            type="phase_start", phase="VALIDATE", run_id=run_id,
            progress=self._progress("VALIDATE"),
        ))
        labelled = await self._validate(transcripts, run_id, warnings)
        if not labelled:
            raise InsufficientData(
                f"no completed transcripts among {len(transcripts)} supplied"
            )
        await self._emit(SynthesisEvent(
            type="phase_end", phase="VALIDATE", run_id=run_id,
            progress=self._progress("ANALYZE"),
            detail={"usable": len(labelled), "excluded": len(transcripts) - len(labelled)},
        ))
        transcripts_text = format_transcripts(labelled, self.taxonomy, self._max_chars)

        # ANALYZE
        await self._emit(SynthesisEvent(
            type="phase_start", phase="ANALYZE", run_id=run_id,
            progress=self._progress("ANALYZE"),
        ))
        scored = await self._analyze(labelled, transcripts_text, run_id, warnings)
        await self._emit(SynthesisEvent(
            type="phase_end", phase="ANALYZE", run_id=run_id,
            progress=self._progress("AGGREGATE"),
        ))

        # AGGREGATE
        await self._emit(SynthesisEvent(
            type="phase_start", phase="AGGREGATE", run_id=run_id,
            progress=self._progress("AGGREGATE"),
        ))
        pillars, overall = self.aggregate_pillars(scored)
        await self._emit(SynthesisEvent(
            type="phase_end", phase="AGGREGATE", run_id=run_id,
            progress=self._progress("REPORT"),
            detail={"overall_score": overall},
        ))

        # REPORT
        await self._emit(SynthesisEvent(
            type="phase_start", phase="REPORT", run_id=run_id,
            progress=self._progress("REPORT"),
        ))
        ordered = self.order_dimensions(scored)
        try:
            draft = await self._writer.write(
                [(pillar.name, dim) for pillar, dim in ordered], labelled, transcripts_text,
            )
        except ValueError as exc:
            logger.warning(f"[{run_id}] 报告撰写降级: {exc}")
            warnings.append(f"Themes, recommendations and summary unavailable: {exc}")
            draft = ReportDraft()

        assessment = ReadinessAssessment(
            taxonomy=self.taxonomy.name,
            taxonomy_version=self.taxonomy.version,
            overall_score=overall,
            pillars=pillars,
            key_themes=self.corroborated_themes(draft),
            contradictions=tuple(draft.contradictions),
            recommendations=self.build_recommendations(ordered, scored, draft),
            executive_summary=draft.executive_summary,
            stakeholder_perspectives=tuple(
                stakeholder_perspective(item, self.taxonomy) for item in labelled
            ),
            transcripts_used=len(labelled),
            warnings=tuple(warnings),
            generated_at=datetime.now(timezone.utc).isoformat(),
        )
        await self._emit(SynthesisEvent(
            type="phase_end", phase="REPORT", run_id=run_id, progress=1.0,
        ))
        logger.info(
            f"[{run_id}] 汇总完成: overall={overall}, transcripts={len(labelled)}, "
            f"warnings={len(warnings)}"
        )
        return assessment

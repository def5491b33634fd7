"""组织级汇总中的模型评估 Agent。 / Model evaluators for organisational synthesis.

DimensionAnalyst: 每个维度一次调用，给出各利益相关者的成熟度信号（0-5）、
                  带来源的发现、引文与"到下一级的差距"。
ReportWriter:     一次调用，给出跨维度主题、矛盾、逐维度建议与执行摘要。

两者只负责提示词与输出解析；加权、聚合、排序由 SynthesisEngine 完成。
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from meridian import prompts
from meridian.catalog.loader import Dimension, Pillar, ReadinessTaxonomy
from meridian.primitives.models import USER, DimensionalScore, StakeholderTranscript
from meridian.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)

PRIORITIES = ("critical", "important", "foundational", "opportunistic")
MAX_SCORE = 5.0


@dataclass(frozen=True)
class LabelledTranscript:
    """带匿名标签（S1、S2 …）的访谈记录。"""

    label: str
    transcript: StakeholderTranscript


@dataclass
class DimensionAnalysis:
    dimension_id: str
    signals: Dict[str, float] = field(default_factory=dict)  # label -> 0~5
    findings: List[Tuple[str, Tuple[str, ...]]] = field(default_factory=list)
    quotes: List[Tuple[str, str]] = field(default_factory=list)  # (quote, label)
    gap_to_next: str = ""
    priority: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ReportDraft:
    themes: List[Tuple[str, Tuple[str, ...]]] = field(default_factory=list)
    contradictions: List[str] = field(default_factory=list)
    recommendations: Dict[str, str] = field(default_factory=dict)
    executive_summary: str = ""


def format_transcripts(
    labelled: Sequence[LabelledTranscript],
    taxonomy: ReadinessTaxonomy,
    max_chars: int = 6000,
) -> str:
    """把访谈记录格式化为提示词文本，单条记录超过 max_chars 时截断。"""
    blocks = []
    for item in labelled:
        t = item.transcript
        header = f"[{item.label}] {taxonomy.role_name(t.role)}"
        lines = []
        for u in t.history:
            speaker = "Stakeholder" if u.role == USER else "Interviewer"
            lines.append(f"{speaker}: {u.content}")
        body = "\n".join(lines)
        if len(body) > max_chars:
            body = body[:max_chars] + "\n[...truncated]"
        blocks.append(f"{header}\n{body}")
    return "\n\n---\n\n".join(blocks)


def _sources(value: Any, labels: Sequence[str]) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return ()
    valid = []
    for v in value:
        label = str(v).strip().upper()
        if label in labels and label not in valid:
            valid.append(label)
    return tuple(valid)


def _signal(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(MAX_SCORE, score))


class DimensionAnalyst:
    """单维度成熟度分析。 / Per-dimension maturity analyst."""

    def __init__(self, llm_caller, taxonomy: ReadinessTaxonomy, max_retries: int = 1):
        self._llm_caller = llm_caller
        self._taxonomy = taxonomy
        self._max_retries = max_retries

    def build_prompt(
        self,
        pillar: Pillar,
        dimension: Dimension,
        labelled: Sequence[LabelledTranscript],
        transcripts_text: str,
    ) -> str:
        levels = "\n".join(
            f"{m.level} {m.name}: {m.description}" for m in self._taxonomy.maturity_levels
        )
        return prompts.DIMENSION_ANALYSIS_PROMPT.format(
            title=self._taxonomy.title,
            dimension_name=dimension.name,
            dimension_id=dimension.id,
            pillar_name=pillar.name,
            dimension_description=dimension.description,
            levels=levels,
            transcripts=transcripts_text,
        )

    @staticmethod
    def parse(raw: str, dimension_id: str, labels: Sequence[str]) -> DimensionAnalysis:
        data = parse_json_from_llm(raw)
        raw_scores = data.get("stakeholder_scores")
        if not isinstance(raw_scores, dict):
            raise ValueError("stakeholder_scores must be an object")
        signals: Dict[str, float] = {}
        for key, value in raw_scores.items():
            label = str(key).strip().upper()
            score = _signal(value)
            if label in labels and score is not None:
                signals[label] = score

        findings = []
        for item in data.get("findings") or []:
            if isinstance(item, dict) and str(item.get("text", "")).strip():
                findings.append((str(item["text"]).strip(), _sources(item.get("sources"), labels)))
            elif isinstance(item, str) and item.strip():
                findings.append((item.strip(), ()))

        quotes = []
        for item in data.get("quotes") or []:
            if isinstance(item, dict) and str(item.get("quote", "")).strip():
                quotes.append((str(item["quote"]).strip(), str(item.get("source", "")).strip().upper()))

        priority = str(data.get("priority") or "").strip().lower()
        return DimensionAnalysis(
            dimension_id=dimension_id,
            signals=signals,
            findings=findings,
            quotes=quotes,
            gap_to_next=str(data.get("gap_to_next") or "").strip(),
            priority=priority if priority in PRIORITIES else None,
        )

    async def analyze(
        self,
        pillar: Pillar,
        dimension: Dimension,
        labelled: Sequence[LabelledTranscript],
        transcripts_text: Optional[str] = None,
    ) -> DimensionAnalysis:
        """分析单个维度。输出始终无法解析时返回空信号（由调用方标记为 insufficient）。

        模型不可用与额度不足直接向上传播。
        """
        labels = [item.label for item in labelled]
        if transcripts_text is None:
            transcripts_text = format_transcripts(labelled, self._taxonomy)
        prompt = self.build_prompt(pillar, dimension, labelled, transcripts_text)

        last_error: Optional[Exception] = None
        for attempt in range(1 + self._max_retries):
            user_prompt = prompt
            if last_error is not None:
                user_prompt = prompts.RETRY_JSON_PREFIX.format(error=last_error) + prompt
            completion = await self._llm_caller(
                system_prompt=prompts.ANALYST_SYSTEM,
                messages=[{"role": "user", "content": user_prompt}],
            )
            try:
                return self.parse(completion.text, dimension.id, labels)
            except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
                last_error = e
                logger.warning(
                    f"DimensionAnalyst {dimension.id} attempt {attempt + 1} failed: {e}"
                )

        logger.error(f"DimensionAnalyst {dimension.id} failed after retries: {last_error}")
        return DimensionAnalysis(dimension_id=dimension.id, error=str(last_error))


class ReportWriter:
    """报告撰写。 / Report writer for themes, recommendations and summary."""

    def __init__(self, llm_caller, taxonomy: ReadinessTaxonomy, max_retries: int = 1):
        self._llm_caller = llm_caller
        self._taxonomy = taxonomy
        self._max_retries = max_retries

    def build_prompt(
        self,
        dimensions: Sequence[Tuple[str, DimensionalScore]],
        labelled: Sequence[LabelledTranscript],
        transcripts_text: str,
    ) -> str:
        stakeholders = "\n".join(
            f"{item.label}: {self._taxonomy.role_name(item.transcript.role)}" for item in labelled
        )
        dim_lines = []
        for pillar_name, d in dimensions:
            findings = "; ".join(d.key_findings) or "no findings"
            dim_lines.append(
                f"- {d.id} {d.name} ({pillar_name}): {d.score:.2f}/5, "
                f"confidence {d.confidence}. Findings: {findings}. "
                f"Gap to next level: {d.gap_to_next or 'n/a'}"
            )
        return prompts.REPORT_PROMPT.format(
            title=self._taxonomy.title,
            stakeholders=stakeholders,
            dimensions="\n".join(dim_lines),
            transcripts=transcripts_text,
        )

    @staticmethod
    def parse(raw: str, labels: Sequence[str]) -> ReportDraft:
        data = parse_json_from_llm(raw)
        themes = []
        for item in data.get("themes") or []:
            if isinstance(item, dict) and str(item.get("theme", "")).strip():
                themes.append((str(item["theme"]).strip(), _sources(item.get("sources"), labels)))
        contradictions = [
            str(c).strip() for c in data.get("contradictions") or [] if str(c).strip()
        ]
        raw_recs = data.get("recommendations") or {}
        if not isinstance(raw_recs, dict):
            raise ValueError("recommendations must be an object keyed by dimension id")
        recommendations = {
            str(k).strip(): str(v).strip() for k, v in raw_recs.items() if str(v).strip()
        }
        return ReportDraft(
            themes=themes,
            contradictions=contradictions,
            recommendations=recommendations,
            executive_summary=str(data.get("executive_summary") or "").strip(),
        )

    async def write(
        self,
        dimensions: Sequence[Tuple[str, DimensionalScore]],
        labelled: Sequence[LabelledTranscript],
        transcripts_text: Optional[str] = None,
    ) -> ReportDraft:
        """撰写报告草稿。

        Raises:
            ValueError: 输出在重试后仍无法解析（调用方降级为空值并记录警告）。
        """
        labels = [item.label for item in labelled]
        if transcripts_text is None:
            transcripts_text = format_transcripts(labelled, self._taxonomy)
        prompt = self.build_prompt(dimensions, labelled, transcripts_text)

        last_error: Optional[Exception] = None
        for attempt in range(1 + self._max_retries):
            user_prompt = prompt
            if last_error is not None:
                user_prompt = prompts.RETRY_JSON_PREFIX.format(error=last_error) + prompt
            completion = await self._llm_caller(
                system_prompt=prompts.REPORT_SYSTEM,
                messages=[{"role": "user", "content": user_prompt}],
            )
            try:
                return self.parse(completion.text, labels)
            except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
                last_error = e
                logger.warning(f"ReportWriter attempt {attempt + 1} failed: {e}")

        raise ValueError(f"report output could not be parsed: {last_error}")

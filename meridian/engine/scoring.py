"""计分引擎。 / Scoring engine.

把一次完成的访谈历史转换为 ArchetypeProfile：
/ Turns a completed interview history into an ArchetypeProfile:

1. 按出现顺序取 user 发言，按位置对应到题本中的题目
2. 解析每个回答的选项字母，most 计 weight_most，ranked 题的 second 计 weight_second
3. 按题组的计分上下文（default / authentic / drain）累加，不取平均
4. 各向量取 arg-max，并列时按原型声明顺序取第一个
5. default 与 authentic 不一致时计算 friction 与张力描述

纯函数：相同的历史永远得到相同的画像。
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from meridian.catalog.loader import ArchetypeCatalog, QuestionScript, default_archetypes
from meridian.engine.selection import parse_selection
from meridian.errors import IncompleteInterview, ScriptVersionMismatch
from meridian.primitives.models import USER, ArchetypeProfile, Utterance

logger = logging.getLogger(__name__)


def arg_max(scores: Dict[str, int], order: Sequence[str]) -> str:
    """取最高分的原型；并列时按 order 中的先后顺序。"""
    best = order[0]
    for key in order:
        if scores[key] > scores[best]:
            best = key
    return best


class ScoringEngine:
    """按题本计分。 / Scores interviews against one question script."""

    def __init__(
        self,
        catalog: Optional[ArchetypeCatalog] = None,
        script: Optional[QuestionScript] = None,
    ):
        if catalog is None or script is None:
            default_catalog, default_script = default_archetypes()
            catalog = catalog or default_catalog
            script = script or default_script
        self.catalog = catalog
        self.script = script

    def tally(self, answers: Sequence[str]) -> Tuple[Dict[str, Dict[str, int]], List[str]]:
        """按计分上下文累加分数。

        Returns:
            ({context: {archetype: score}}, 回答无法解析的题目 id 列表)
        """
        vectors = {
            section.context: self.catalog.zero_vector()
            for section in self.script.sections
            if section.context is not None
        }
        unscored: List[str] = []
        for question, answer in zip(self.script.questions, answers):
            context = self.script.section(question.section).context
            if context is None:
                continue
            selection = parse_selection(answer, question)
            if not selection.detected:
                logger.warning(f"题目 {question.id} 的回答无法解析，不计分: {answer[:80]!r}")
                unscored.append(question.id)
                continue
            vector = vectors[context]
            vector[question.option(selection.most).archetype] += self.script.weight_most
            if selection.second:
                vector[question.option(selection.second).archetype] += self.script.weight_second
        return vectors, unscored

    def _require_scored(self, unscored: Sequence[str]) -> None:
        """default 与 authentic 题组都至少要有一个可解析的回答。"""
        skipped = set(unscored)
        for context in ("default", "authentic"):
            ids = [
                q.id for q in self.script.questions
                if self.script.section(q.section).context == context
            ]
            if ids and all(qid in skipped for qid in ids):
                raise IncompleteInterview(
                    f"no answer in the '{context}' section could be scored"
                )

    def tension_description(self, default_key: str, authentic_key: str) -> str:
        default = self.catalog.get(default_key)
        authentic = self.catalog.get(authentic_key)
        text = (
            f"Under pressure you tend to lead as {default.name}: {default.under_pressure}. "
            f"When grounded, you lead as {authentic.name}: {authentic.when_grounded}."
        )
        if default.overuse_signals:
            signals = "; ".join(default.overuse_signals)
            text += f" Watch for signs that {default.name} is being overused: {signals}."
        return text

    def score(
        self,
        history: Sequence[Utterance],
        script_version: Optional[str] = None,
    ) -> ArchetypeProfile:
        """计算原型画像。

        Args:
            history: 完整访谈历史（仅 user 发言参与计分）。
            script_version: 会话开场时记录的题本版本；为空表示不校验。

        Raises:
            ScriptVersionMismatch: 会话题本版本与当前题本不一致。
            IncompleteInterview: 回答数少于题目数，或 default / authentic 题组没有任何可计分的回答。
        """
        if script_version and script_version != self.script.version:
            raise ScriptVersionMismatch(
                f"session was recorded with script v{script_version}, "
                f"loaded script is v{self.script.version}"
            )
        answers: List[str] = [u.content for u in history if u.role == USER]
        required = self.script.question_count
        if len(answers) < required:
            raise IncompleteInterview(
                f"interview has {len(answers)} answers, {required} required"
            )

        vectors, unscored = self.tally(answers[:required])
        self._require_scored(unscored)
        order = self.catalog.keys()
        empty = self.catalog.zero_vector()
        default_scores = vectors.get("default", empty)
        authentic_scores = vectors.get("authentic", dict(empty))
        default_key = arg_max(default_scores, order)
        authentic_key = arg_max(authentic_scores, order)

        aligned = default_key == authentic_key
        friction: Dict[str, int] = {}
        tension = None
        if not aligned:
            friction = {k: default_scores[k] - authentic_scores[k] for k in order}
            tension = self.tension_description(default_key, authentic_key)

        profile = ArchetypeProfile(
            default_scores=default_scores,
            authentic_scores=authentic_scores,
            default_archetype=default_key,
            authentic_archetype=authentic_key,
            friction_scores=friction,
            drain_scores=vectors.get("drain", {}),
            tension_description=tension,
            script_version=self.script.version,
            unscored_questions=tuple(unscored),
        )
        logger.info(
            f"计分完成: default={default_key}, authentic={authentic_key}, "
            f"aligned={profile.is_aligned}"
        )
        return profile


def score_interview(
    history: Sequence[Utterance],
    script_version: Optional[str] = None,
    catalog: Optional[ArchetypeCatalog] = None,
    script: Optional[QuestionScript] = None,
) -> ArchetypeProfile:
    """便捷入口：使用默认（或指定的）原型目录与题本计分。"""
    return ScoringEngine(catalog=catalog, script=script).score(history, script_version)

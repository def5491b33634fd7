"""增强合成 Agent。 / Enhancement synthesizer.

把反思对话与原型画像合成为个性化叙事（EnhancedResult）。
/ Combines the reflection conversation with the archetype profile into
personalised narratives.

增强是纯叠加的：EnhancedResult.profile 就是传入的画像对象本身，
分数与原型永远不会被改写。
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from meridian import prompts
from meridian.catalog.loader import ArchetypeCatalog, default_archetypes
from meridian.errors import EnhancementFailed, ModelUnavailable, UsageLimitExceeded
from meridian.llm.router import ConfigurationError
from meridian.primitives.models import (
    USER,
    ArchetypeProfile,
    EnhancedResult,
    MeaningfulQuote,
    Utterance,
)
from meridian.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)


def _format_transcript(history: Sequence[Utterance]) -> str:
    lines = []
    for u in history:
        speaker = "Participant" if u.role == USER else "Guide"
        lines.append(f"{speaker}: {u.content}")
    return "\n\n".join(lines)


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _quotes(value: Any) -> List[MeaningfulQuote]:
    quotes: List[MeaningfulQuote] = []
    for item in value if isinstance(value, list) else []:
        if isinstance(item, dict) and str(item.get("quote", "")).strip():
            quotes.append(MeaningfulQuote(
                quote=str(item["quote"]).strip(),
                context=str(item.get("context") or "").strip(),
            ))
        elif isinstance(item, str) and item.strip():
            quotes.append(MeaningfulQuote(quote=item.strip()))
    return quotes


class EnhancementSynthesizer:
    """个性化增强合成器。 / Personalised enhancement synthesizer."""

    def __init__(
        self,
        llm_caller,
        catalog: Optional[ArchetypeCatalog] = None,
        max_retries: int = 2,
    ):
        self._llm_caller = llm_caller
        self._catalog = catalog or default_archetypes()[0]
        self._max_retries = max_retries

    def build_prompt(
        self,
        profile: ArchetypeProfile,
        reflection_history: Sequence[Utterance],
        participant_name: Optional[str],
    ) -> str:
        default = self._catalog.get(profile.default_archetype)
        authentic = self._catalog.get(profile.authentic_archetype)
        tension = ""
        if profile.tension_description:
            tension = f"Tension: {profile.tension_description}"
        return prompts.ENHANCEMENT_PROMPT.format(
            participant=participant_name or "the participant",
            default_name=default.name,
            default_pressure=default.under_pressure,
            authentic_name=authentic.name,
            authentic_grounded=authentic.when_grounded,
            aligned="yes" if profile.is_aligned else "no",
            tension=tension,
            transcript=_format_transcript(reflection_history),
        )

    def _parse(self, raw: str, profile: ArchetypeProfile) -> Dict[str, Any]:
        data = parse_json_from_llm(raw)
        default_narrative = str(data.get("default_narrative") or "").strip()
        authentic_narrative = str(data.get("authentic_narrative") or "").strip()
        if not default_narrative or not authentic_narrative:
            raise ValueError("narratives are missing from the enhancement output")
        tension = data.get("tension_insights")
        if profile.is_aligned or not isinstance(tension, str) or not tension.strip():
            tension = None
        return {
            "default_narrative": default_narrative,
            "authentic_narrative": authentic_narrative,
            "tension_insights": tension.strip() if tension else None,
            "themes": tuple(_string_list(data.get("themes"))),
            "guidance": str(data.get("guidance") or "").strip(),
            "quotes": tuple(_quotes(data.get("quotes"))),
        }

    async def synthesize(
        self,
        profile: ArchetypeProfile,
        reflection_history: Sequence[Utterance],
        participant_name: Optional[str] = None,
    ) -> EnhancedResult:
        """生成个性化增强结果。

        Raises:
            EnhancementFailed: 没有反思内容、画像原型不在目录中、模型未配置或不可用、
                额度不足，或输出始终无法解析。失败原因通过 __cause__ 保留。
        """
        if not any(u.role == USER and u.content.strip() for u in reflection_history):
            raise EnhancementFailed("reflection has no participant messages to synthesize")

        try:
            prompt = self.build_prompt(profile, reflection_history, participant_name)
        except KeyError as exc:
            raise EnhancementFailed(f"profile archetype is not in the catalog: {exc}") from exc

        last_error: Optional[Exception] = None
        for attempt in range(1 + self._max_retries):
            user_prompt = prompt
            if last_error is not None:
                user_prompt = prompts.RETRY_JSON_PREFIX.format(error=last_error) + prompt
            try:
                completion = await self._llm_caller(
                    system_prompt=prompts.ENHANCEMENT_SYSTEM,
                    messages=[{"role": USER, "content": user_prompt}],
                )
            except (ConfigurationError, ModelUnavailable, UsageLimitExceeded) as exc:
                raise EnhancementFailed(f"enhancement model call failed: {exc}") from exc
            try:
                fields = self._parse(completion.text, profile)
            except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
                last_error = e
                logger.warning(f"Enhancement attempt {attempt + 1} failed: {e}")
                continue
            logger.info(
                f"Enhancement complete: {len(fields['themes'])} themes, "
                f"{len(fields['quotes'])} quotes"
            )
            return EnhancedResult(
                profile=profile,
                enhanced_at=datetime.now(timezone.utc).isoformat(),
                **fields,
            )

        logger.error(f"Enhancement failed after retries: {last_error}")
        raise EnhancementFailed(f"enhancement output could not be parsed: {last_error}")


async def synthesize_enhancement(
    llm_caller,
    profile: ArchetypeProfile,
    reflection_history: Sequence[Utterance],
    participant_name: Optional[str] = None,
    catalog: Optional[ArchetypeCatalog] = None,
) -> EnhancedResult:
    """便捷入口：用默认原型目录合成一次增强结果。"""
    synthesizer = EnhancementSynthesizer(llm_caller, catalog=catalog)
    return await synthesizer.synthesize(profile, reflection_history, participant_name)

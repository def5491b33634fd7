"""反思状态机。 / Reflection state machine.

阶段 / Phases:
    opening → conversation → closing → completed

- 开场回合根据张力 / 一致给出 2-3 个反思问题，随后进入 conversation
- 每个用户回合 exchange_count + 1
- exchange_count 达到 CLOSING_AFTER 时强制进入 closing（回复为收尾）
- closing 之后的下一个用户回合结束反思，并同步等待个性化增强

增强失败不影响反思结束：完成状态照常返回，失败记录在 degraded 中。
"""

import dataclasses
import logging
from typing import Optional, Sequence, Union

from meridian import prompts
from meridian.agents.enhancement import EnhancementSynthesizer
from meridian.catalog.loader import ArchetypeCatalog, default_archetypes
from meridian.engine.turns import ModelCaller, PhaseRule, PhaseTable, TurnProcessor, always
from meridian.errors import EnhancementFailed, ResultsNotReady
from meridian.primitives.models import (
    STATUS_COMPLETED,
    ArchetypeProfile,
    ParticipantContext,
    ReflectionState,
    ReflectionTurn,
    Utterance,
)

logger = logging.getLogger(__name__)

OPENING = "opening"
CONVERSATION = "conversation"
CLOSING = "closing"
COMPLETED = "completed"

CLOSING_AFTER = 2  # 第 2 个用户回合后进入 closing
COMPLETE_AFTER = CLOSING_AFTER + 1

REFLECTION_TABLE = PhaseTable(
    [
        PhaseRule(OPENING, CONVERSATION, always),
        PhaseRule(CONVERSATION, CLOSING, lambda s: s.exchange_count >= CLOSING_AFTER),
        PhaseRule(CLOSING, COMPLETED, lambda s: s.exchange_count >= COMPLETE_AFTER),
    ],
    terminal=COMPLETED,
)


def ensure_results_ready(
    profile: Optional[ArchetypeProfile], interview_status: Optional[str],
) -> ArchetypeProfile:
    """反思的前置条件：访谈已完成且已有画像。"""
    if interview_status != STATUS_COMPLETED:
        raise ResultsNotReady(
            f"interview status is '{interview_status}', reflection requires a completed interview"
        )
    if profile is None:
        raise ResultsNotReady("interview has no archetype profile yet")
    return profile


class ReflectionEngine(TurnProcessor):
    """反思对话的回合处理器。 / Turn processor for the reflection conversation."""

    phase_table = REFLECTION_TABLE
    opening_trigger = "[Session started - please provide opening reflection questions]"

    def __init__(
        self,
        llm_caller: ModelCaller,
        profile: Optional[ArchetypeProfile],
        interview_status: Optional[str] = STATUS_COMPLETED,
        catalog: Optional[ArchetypeCatalog] = None,
        enhancer: Optional[EnhancementSynthesizer] = None,
    ):
        super().__init__(llm_caller)
        self.profile = ensure_results_ready(profile, interview_status)
        self.catalog = catalog or default_archetypes()[0]
        self._enhancer = enhancer

    def initial_state(self, context: ParticipantContext) -> ReflectionState:
        return ReflectionState(phase=OPENING)

    def advance_state(self, state: ReflectionState, content: str) -> ReflectionState:
        return dataclasses.replace(state, exchange_count=state.exchange_count + 1)

    def instruction(
        self,
        previous: ReflectionState,
        current: ReflectionState,
        context: ParticipantContext,
    ) -> str:
        if previous.phase == OPENING:
            if self.profile.is_aligned:
                return prompts.REFLECTION_OPENING_ALIGNED
            return prompts.REFLECTION_OPENING_TENSION
        if current.phase == COMPLETED:
            return prompts.REFLECTION_COMPLETE
        if current.phase == CLOSING:
            return prompts.REFLECTION_CLOSING
        return prompts.REFLECTION_CONVERSATION

    def system_prompt(
        self, state: ReflectionState, instruction: str, context: ParticipantContext,
    ) -> str:
        default = self.catalog.get(self.profile.default_archetype)
        authentic = self.catalog.get(self.profile.authentic_archetype)
        if self.profile.is_aligned:
            pattern = prompts.REFLECTION_PATTERN_ALIGNED.format(default_name=default.name)
        else:
            signals = "\n".join(f"- {s}" for s in default.overuse_signals) or "- (none listed)"
            pattern = prompts.REFLECTION_PATTERN_TENSION.format(
                default_name=default.name, authentic_name=authentic.name, signals=signals,
            )
        facilitated_by = (
            f"Their coach is {context.facilitator_name}." if context.facilitator_name else ""
        )
        return prompts.REFLECTION_SYSTEM.format(
            participant=context.participant_name or "a leader",
            facilitated_by=facilitated_by,
            default_name=default.name,
            default_pressure=default.under_pressure,
            default_traits=", ".join(default.core_traits),
            authentic_name=authentic.name,
            authentic_grounded=authentic.when_grounded,
            authentic_traits=", ".join(authentic.core_traits),
            pattern=pattern,
            phase=state.phase,
            exchange_count=state.exchange_count,
            limit=COMPLETE_AFTER,
            instruction=instruction,
        )

    async def process_turn(
        self,
        incoming: Optional[Union[Utterance, str]],
        state: Optional[ReflectionState],
        history: Sequence[Utterance],
        context: ParticipantContext,
    ) -> ReflectionTurn:
        result = await super().process_turn(incoming, state, history, context)

        enhanced = None
        degraded = ()
        if result.state.is_complete and self._enhancer is not None:
            reflection_history = list(history) + list(result.utterances)
            try:
                enhanced = await self._enhancer.synthesize(
                    self.profile, reflection_history, context.participant_name,
                )
            except EnhancementFailed as exc:
                logger.warning(f"反思已完成，但个性化增强失败: {exc}")
                degraded = ("enhancement",)

        return ReflectionTurn(
            reply=result.reply,
            state=result.state,
            usage=result.usage,
            utterances=result.utterances,
            enhanced=enhanced,
            degraded=degraded,
        )

# tests/engine/test_reflection_engine.py
"""Tests for the reflection state machine."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from meridian.agents.enhancement import EnhancementSynthesizer
from meridian.engine.reflection import (
    CLOSING,
    COMPLETED,
    CONVERSATION,
    ReflectionEngine,
    ensure_results_ready,
)
from meridian.errors import AlreadyComplete, EnhancementFailed, ResultsNotReady
from meridian.primitives.models import (
    STATUS_COMPLETED,
    STATUS_INCOMPLETE,
    ArchetypeProfile,
    Completion,
    ModelUsage,
    ParticipantContext,
    ReflectionState,
)

CTX = ParticipantContext(tenant_id="t1", participant_name="Dana", facilitator_name="Mira")
KEYS = ["anchor", "catalyst", "steward", "wayfinder", "architect"]


def _profile(default="catalyst", authentic="steward"):
    default_scores = dict.fromkeys(KEYS, 0)
    authentic_scores = dict.fromkeys(KEYS, 0)
    default_scores[default] = 18
    authentic_scores[authentic] = 8
    return ArchetypeProfile(
        default_scores=default_scores,
        authentic_scores=authentic_scores,
        default_archetype=default,
        authentic_archetype=authentic,
        tension_description=None if default == authentic else "tension",
        script_version="1.0",
    )


def _caller():
    return AsyncMock(return_value=Completion("reply", ModelUsage(30, 15)))


def _prompt(caller):
    return caller.await_args.kwargs["system_prompt"]


async def _run(engine, messages):
    history = []
    turn = await engine.process_turn(None, None, history, CTX)
    history.extend(turn.utterances)
    turns = [turn]
    for message in messages:
        turn = await engine.process_turn(message, turn.state, history, CTX)
        history.extend(turn.utterances)
        turns.append(turn)
    return turns, history


class TestPreconditions:

    def test_incomplete_interview_rejected(self):
        with pytest.raises(ResultsNotReady):
            ensure_results_ready(_profile(), STATUS_INCOMPLETE)

    def test_missing_profile_rejected(self):
        with pytest.raises(ResultsNotReady):
            ReflectionEngine(_caller(), None, STATUS_COMPLETED)

    def test_ready(self):
        profile = _profile()
        assert ensure_results_ready(profile, STATUS_COMPLETED) is profile


class TestOpening:

    @pytest.mark.asyncio
    async def test_tension_opening(self):
        caller = _caller()
        turn = await ReflectionEngine(caller, _profile()).process_turn(None, None, [], CTX)

        assert turn.state == ReflectionState(phase=CONVERSATION, exchange_count=0)
        prompt = _prompt(caller)
        assert "Tension pattern" in prompt
        assert "Catalyst" in prompt and "Steward" in prompt
        assert "- Feeling like nothing moves unless you push it" in prompt
        assert "how the tension shows up" in prompt
        assert "Their coach is Mira." in prompt

    @pytest.mark.asyncio
    async def test_aligned_opening(self):
        caller = _caller()
        await ReflectionEngine(caller, _profile("wayfinder", "wayfinder")).process_turn(None, None, [], CTX)

        prompt = _prompt(caller)
        assert "Alignment: their Wayfinder archetype" in prompt
        assert "Tension pattern" not in prompt


class TestConversationFlow:

    @pytest.mark.asyncio
    async def test_phases_and_exchange_count(self):
        caller = _caller()
        turns, _ = await _run(ReflectionEngine(caller, _profile()), [
            "It shows up when deadlines slip.",
            "Mostly in planning meetings.",
            "Nothing else, thank you.",
        ])

        assert [t.state.phase for t in turns] == [CONVERSATION, CONVERSATION, CLOSING, COMPLETED]
        assert [t.state.exchange_count for t in turns] == [0, 1, 2, 3]
        assert turns[-1].state.is_complete
        assert "The reflection is complete" in _prompt(caller)

    @pytest.mark.asyncio
    async def test_closing_instruction_on_second_exchange(self):
        caller = _caller()
        await _run(ReflectionEngine(caller, _profile()), ["one", "two"])
        assert "Wrap up the reflection" in _prompt(caller)

    @pytest.mark.asyncio
    async def test_no_turns_after_completion(self):
        caller = _caller()
        state = ReflectionState(phase=COMPLETED, exchange_count=3, is_complete=True)
        with pytest.raises(AlreadyComplete):
            await ReflectionEngine(caller, _profile()).process_turn("hello again", state, [], CTX)
        caller.assert_not_awaited()


class TestEnhancementOnCompletion:

    @pytest.mark.asyncio
    async def test_enhancer_awaited_with_full_history(self):
        enhancer = MagicMock(spec=EnhancementSynthesizer)
        enhancer.synthesize = AsyncMock(return_value="enhanced")
        profile = _profile()
        turns, history = await _run(
            ReflectionEngine(_caller(), profile, enhancer=enhancer), ["a", "b", "c"],
        )

        assert turns[-1].enhanced == "enhanced"
        assert turns[-1].degraded == ()
        assert all(t.enhanced is None for t in turns[:-1])
        enhancer.synthesize.assert_awaited_once()
        args = enhancer.synthesize.await_args.args
        assert args[0] is profile
        assert list(args[1]) == history
        assert args[2] == "Dana"

    @pytest.mark.asyncio
    async def test_enhancement_failure_degrades(self):
        enhancer = MagicMock(spec=EnhancementSynthesizer)
        enhancer.synthesize = AsyncMock(side_effect=EnhancementFailed("bad json"))
        turns, _ = await _run(ReflectionEngine(_caller(), _profile(), enhancer=enhancer), ["a", "b", "c"])

        final = turns[-1]
        assert final.state.phase == COMPLETED
        assert final.enhanced is None
        assert final.degraded == ("enhancement",)

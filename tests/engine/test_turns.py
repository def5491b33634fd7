# tests/engine/test_turns.py
"""Tests for the table-driven phase transitions and the turn processor base."""

import dataclasses

import pytest
from unittest.mock import AsyncMock

from meridian.engine.turns import PhaseRule, PhaseTable, TurnProcessor, always
from meridian.errors import AlreadyComplete
from meridian.primitives.models import Completion, ModelUsage, ParticipantContext, ReflectionState, Utterance


@dataclasses.dataclass(frozen=True)
class _Counter:
    phase: str = "start"
    count: int = 0
    is_complete: bool = False


_TABLE = PhaseTable(
    [
        PhaseRule("start", "middle", always),
        PhaseRule("middle", "end", lambda s: s.count >= 2),
    ],
    terminal="end",
)


class _CountingProcessor(TurnProcessor):
    phase_table = _TABLE

    def initial_state(self, context):
        return _Counter()

    def advance_state(self, state, content):
        return dataclasses.replace(state, count=state.count + 1)

    def instruction(self, previous, current, context):
        return f"{previous.phase}->{current.phase}"

    def system_prompt(self, state, instruction, context):
        return f"[{instruction}]"


def _caller(text="ok"):
    return AsyncMock(return_value=Completion(text, ModelUsage(3, 4)))


CTX = ParticipantContext(tenant_id="t1")


class TestPhaseTable:

    def test_settle_applies_rules_until_none_fire(self):
        settled = _TABLE.settle(_Counter(phase="start", count=2))
        assert settled.phase == "end"
        assert settled.is_complete is True

    def test_settle_stops_when_trigger_false(self):
        settled = _TABLE.settle(_Counter(phase="start", count=0))
        assert settled.phase == "middle"
        assert settled.is_complete is False

    def test_terminal_sets_is_complete_together_with_phase(self):
        table = PhaseTable([PhaseRule("closing", "completed", lambda s: s.exchange_count >= 3)], "completed")
        settled = table.settle(ReflectionState(phase="closing", exchange_count=3))
        assert settled == ReflectionState(phase="completed", exchange_count=3, is_complete=True)

    def test_duplicate_rules_rejected(self):
        with pytest.raises(ValueError):
            PhaseTable([PhaseRule("a", "b", always), PhaseRule("a", "c", always)], "c")

    def test_cycle_detected(self):
        table = PhaseTable([PhaseRule("a", "b", always), PhaseRule("b", "a", always)], "z")
        with pytest.raises(RuntimeError):
            table.settle(_Counter(phase="a"))

    def test_phases_in_declaration_order(self):
        assert _TABLE.phases == ["start", "middle", "end"]


class TestTurnProcessor:

    @pytest.mark.asyncio
    async def test_opening_does_not_consume_incoming(self):
        caller = _caller("Welcome")
        result = await _CountingProcessor(caller).process_turn(None, None, [], CTX)

        assert result.state == _Counter(phase="middle")
        assert [u.role for u in result.utterances] == ["assistant"]
        kwargs = caller.await_args.kwargs
        assert kwargs["system_prompt"] == "[start->middle]"
        assert kwargs["messages"][-1]["content"] == _CountingProcessor.opening_trigger

    @pytest.mark.asyncio
    async def test_turn_records_user_and_reply(self):
        caller = _caller("  Thanks.  ")
        history = [Utterance("assistant", "Welcome")]
        result = await _CountingProcessor(caller).process_turn(
            "hello", _Counter(phase="middle"), history, CTX,
        )

        assert result.reply == Utterance("assistant", "Thanks.")
        assert result.utterances == (Utterance("user", "hello"), result.reply)
        assert result.state.count == 1
        assert result.usage.total_tokens == 7
        messages = caller.await_args.kwargs["messages"]
        assert messages == [
            {"role": "assistant", "content": "Welcome"},
            {"role": "user", "content": "hello"},
        ]

    @pytest.mark.asyncio
    async def test_history_and_state_untouched(self):
        state = _Counter(phase="middle", count=1)
        history = [Utterance("assistant", "Welcome")]
        result = await _CountingProcessor(_caller()).process_turn("hi", state, history, CTX)

        assert history == [Utterance("assistant", "Welcome")]
        assert state == _Counter(phase="middle", count=1)
        assert result.state.phase == "end"
        assert result.state.is_complete

    @pytest.mark.asyncio
    async def test_system_utterances_not_sent_as_messages(self):
        caller = _caller()
        history = [Utterance("system", "note"), Utterance("assistant", "Q")]
        await _CountingProcessor(caller).process_turn("A", _Counter(phase="middle"), history, CTX)
        roles = [m["role"] for m in caller.await_args.kwargs["messages"]]
        assert roles == ["assistant", "user"]

    @pytest.mark.asyncio
    async def test_complete_state_rejects_turns(self):
        caller = _caller()
        with pytest.raises(AlreadyComplete):
            await _CountingProcessor(caller).process_turn(
                "more", _Counter(phase="end", count=2, is_complete=True), [], CTX,
            )
        caller.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_incoming_after_start(self):
        with pytest.raises(ValueError):
            await _CountingProcessor(_caller()).process_turn(None, _Counter(phase="middle"), [], CTX)

# tests/agents/test_enhancement.py
"""Tests for the enhancement synthesizer."""

import json

import pytest
from unittest.mock import AsyncMock

from meridian.agents.enhancement import EnhancementSynthesizer, synthesize_enhancement
from meridian.errors import EnhancementFailed, ModelUnavailable, UsageLimitExceeded
from meridian.llm.router import ConfigurationError
from meridian.primitives.models import ArchetypeProfile, Completion, ModelUsage, Utterance

KEYS = ["anchor", "catalyst", "steward", "wayfinder", "architect"]

REFLECTION = [
    Utterance("assistant", "What situations bring out your default response?"),
    Utterance("user", "When a launch date slips I start pushing everyone, and I hate how it feels."),
    Utterance("assistant", "Thank you for sharing that."),
    Utterance("user", "I'd like to make more space for the team to think."),
]

GOOD_OUTPUT = {
    "default_narrative": "Under pressure you push hard to keep launches on track.",
    "authentic_narrative": "At your best you build trust so people can think.",
    "tension_insights": "Pushing when dates slip pulls you away from care.",
    "themes": ["launch pressure", "space to think"],
    "guidance": "Try naming the slip before pushing.",
    "quotes": [
        {"quote": "I start pushing everyone", "context": "default under pressure"},
        "make more space for the team",
    ],
}


def _profile(default="catalyst", authentic="steward"):
    default_scores = dict.fromkeys(KEYS, 0)
    authentic_scores = dict.fromkeys(KEYS, 0)
    default_scores[default] = 10
    authentic_scores[authentic] = 6
    return ArchetypeProfile(
        default_scores=default_scores,
        authentic_scores=authentic_scores,
        default_archetype=default,
        authentic_archetype=authentic,
    )


def _completion(payload):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return Completion(text, ModelUsage(200, 120))


class TestSynthesize:

    @pytest.mark.asyncio
    async def test_builds_enhanced_result(self):
        caller = AsyncMock(return_value=_completion(GOOD_OUTPUT))
        profile = _profile()

        result = await EnhancementSynthesizer(caller).synthesize(profile, REFLECTION, "Dana")

        assert result.profile is profile
        assert result.default_narrative.startswith("Under pressure")
        assert result.tension_insights == "Pushing when dates slip pulls you away from care."
        assert result.themes == ("launch pressure", "space to think")
        assert [q.quote for q in result.quotes] == [
            "I start pushing everyone", "make more space for the team",
        ]
        assert result.quotes[0].context == "default under pressure"
        assert result.enhanced_at

        prompt = caller.await_args.kwargs["messages"][0]["content"]
        assert "Participant: Dana" in prompt
        assert "Participant: When a launch date slips" in prompt
        assert "Default (under pressure): Catalyst" in prompt

    @pytest.mark.asyncio
    async def test_aligned_profile_has_no_tension_insights(self):
        caller = AsyncMock(return_value=_completion(GOOD_OUTPUT))
        result = await EnhancementSynthesizer(caller).synthesize(_profile("steward", "steward"), REFLECTION)
        assert result.tension_insights is None

    @pytest.mark.asyncio
    async def test_fenced_output_accepted(self):
        fenced = "Here you go:\n```json\n" + json.dumps(GOOD_OUTPUT) + "\n```"
        caller = AsyncMock(return_value=_completion(fenced))
        result = await EnhancementSynthesizer(caller).synthesize(_profile(), REFLECTION)
        assert result.guidance == "Try naming the slip before pushing."

    @pytest.mark.asyncio
    async def test_retries_after_unparseable_output(self):
        caller = AsyncMock(side_effect=[
            _completion("I think the participant is doing well."),
            _completion(GOOD_OUTPUT),
        ])
        result = await EnhancementSynthesizer(caller).synthesize(_profile(), REFLECTION)

        assert result.themes
        assert caller.await_count == 2
        retry_prompt = caller.await_args.kwargs["messages"][0]["content"]
        assert retry_prompt.startswith("Your previous reply could not be parsed")

    @pytest.mark.asyncio
    async def test_missing_narratives_count_as_failure(self):
        caller = AsyncMock(return_value=_completion({"themes": ["x"]}))
        with pytest.raises(EnhancementFailed):
            await EnhancementSynthesizer(caller, max_retries=1).synthesize(_profile(), REFLECTION)
        assert caller.await_count == 2

    @pytest.mark.asyncio
    async def test_module_entry_point(self):
        caller = AsyncMock(return_value=_completion(GOOD_OUTPUT))
        profile = _profile()
        result = await synthesize_enhancement(caller, profile, REFLECTION, "Dana")
        assert result.profile is profile
        assert result.guidance == "Try naming the slip before pushing."


class TestFailures:

    @pytest.mark.asyncio
    async def test_no_participant_messages(self):
        caller = AsyncMock()
        history = [Utterance("assistant", "Opening questions...")]
        with pytest.raises(EnhancementFailed):
            await EnhancementSynthesizer(caller).synthesize(_profile(), history)
        caller.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ModelUnavailable("timeout"),
        UsageLimitExceeded("limit reached"),
        ConfigurationError("no model configured for enhancement"),
    ])
    async def test_model_errors_become_enhancement_failed(self, error):
        caller = AsyncMock(side_effect=error)
        with pytest.raises(EnhancementFailed) as exc_info:
            await EnhancementSynthesizer(caller).synthesize(_profile(), REFLECTION)
        assert exc_info.value.__cause__ is error
        assert caller.await_count == 1

    @pytest.mark.asyncio
    async def test_archetype_missing_from_catalog(self):
        caller = AsyncMock()
        profile = ArchetypeProfile(
            default_scores={"ghost": 2}, authentic_scores={"ghost": 1},
            default_archetype="ghost", authentic_archetype="ghost",
        )
        with pytest.raises(EnhancementFailed) as exc_info:
            await EnhancementSynthesizer(caller).synthesize(profile, REFLECTION)
        assert isinstance(exc_info.value.__cause__, KeyError)
        caller.assert_not_awaited()

# tests/sources/test_sources.py
"""Tests for the per-session-kind transcript sources."""

import pytest

from meridian.errors import TranscriptParseError
from meridian.sources import (
    CoachingTranscriptSource,
    EducationTranscriptSource,
    IndustryTranscriptSource,
    collect_transcripts,
)

RECORDS = {
    "ind-1": {
        "stakeholder_role": "it_operations",
        "stakeholder_name": "Ravi",
        "status": "Complete",
        "conversation_history": [
            {"role": "assistant", "content": "How old is the network?"},
            {"role": "user", "content": "Ten years."},
        ],
    },
    "edu-1": {
        "participant_type": "student",
        "status": "completed",
        "conversation_history": [{"role": "user", "content": "I feel safe at school."}],
    },
    "coach-1": {
        "client_name": "Dana",
        "status": "in_progress",
        "messages": [{"role": "user", "content": "B first, D second"}],
    },
    "bad-history": {
        "stakeholder_role": "it_operations",
        "status": "completed",
        "conversation_history": [{"role": "robot", "content": "beep"}],
    },
}


def _sync_loader(ref):
    return RECORDS.get(ref)


async def _async_loader(ref):
    return RECORDS.get(ref)


class TestSources:

    @pytest.mark.asyncio
    async def test_industry_fields(self):
        transcript = await IndustryTranscriptSource(_sync_loader).fetch_transcript("ind-1")

        assert transcript.role == "it_operations"
        assert transcript.participant == "Ravi"
        assert transcript.status == "completed"
        assert transcript.session_ref == "ind-1"
        assert transcript.user_utterances() == ["Ten years."]
        assert transcript.is_usable

    @pytest.mark.asyncio
    async def test_education_is_anonymous(self):
        transcript = await EducationTranscriptSource(_async_loader).fetch_transcript("edu-1")
        assert transcript.role == "student"
        assert transcript.participant is None

    @pytest.mark.asyncio
    async def test_coaching_uses_fixed_role(self):
        source = CoachingTranscriptSource(_sync_loader, role="leader")
        transcript = await source.fetch_transcript("coach-1")

        assert transcript.role == "leader"
        assert transcript.participant == "Dana"
        assert transcript.status == "in_progress"
        assert not transcript.is_usable

    @pytest.mark.asyncio
    async def test_missing_record(self):
        with pytest.raises(TranscriptParseError, match="not found"):
            await IndustryTranscriptSource(_async_loader).fetch_transcript("nope")

    @pytest.mark.asyncio
    async def test_malformed_history(self):
        with pytest.raises(TranscriptParseError):
            await IndustryTranscriptSource(_sync_loader).fetch_transcript("bad-history")


class TestCollectTranscripts:

    @pytest.mark.asyncio
    async def test_failures_become_warnings(self):
        transcripts, warnings = await collect_transcripts(
            IndustryTranscriptSource(_async_loader), ["ind-1", "nope", "bad-history"],
        )

        assert [t.session_ref for t in transcripts] == ["ind-1"]
        assert len(warnings) == 2
        assert warnings[0] == "Session nope skipped: session 'nope' was not found"
        assert warnings[1].startswith("Session bad-history skipped:")

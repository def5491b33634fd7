# tests/engine/test_synthesis_engine.py
"""Tests for the cross-participant synthesis engine."""

import json

import pytest
from unittest.mock import AsyncMock

from meridian import prompts
from meridian.agents.analyst import DimensionAnalysis
from meridian.catalog.loader import build_taxonomy, default_taxonomy
from meridian.engine.synthesis import (
    SynthesisEngine,
    aggregate,
    confidence_for,
    priority_for,
)
from meridian.errors import InsufficientData, ModelUnavailable
from meridian.primitives.events import SynthesisEvent
from meridian.primitives.models import Completion, ModelUsage, StakeholderTranscript, Utterance

TAXONOMY = build_taxonomy({
    "name": "plant_readiness",
    "title": "Plant Readiness",
    "roles": [
        {"id": "ops", "name": "Operations"},
        {"id": "finance", "name": "Finance"},
        {"id": "observer", "name": "Observer"},
    ],
    "maturity_levels": [{"level": 0, "name": "None"}, {"level": 5, "name": "Leading"}],
    "pillars": [
        {"id": "tech", "name": "Technology", "weight": 0.6, "aggregation": "mean", "dimensions": [
            {"id": "D1", "name": "Connectivity", "role_weights": {"ops": 2.0, "observer": 0}},
            {"id": "D2", "name": "Analytics"},
        ]},
        {"id": "people", "name": "People", "weight": 0.4, "aggregation": "min", "dimensions": [
            {"id": "D3", "name": "Wellbeing"},
            {"id": "D4", "name": "Skills"},
        ]},
    ],
})

OPS_CONCERN = "Our machines are connected but the data sits in three different systems."
OPS_QUOTE = OPS_CONCERN + " Nobody trusts the dashboards yet."

DIMENSIONS = {
    "D1": {
        "stakeholder_scores": {"S1": 2, "S2": 5},
        "findings": [{"text": "Data is siloed", "sources": ["S1", "S2"]}],
        "quotes": [{"quote": "three different systems", "source": "S1"}],
        "gap_to_next": "Connect shop-floor data to planning",
    },
    "D2": {
        "stakeholder_scores": {"S1": 4, "S2": None},
        "findings": ["Pilots exist"],
        "gap_to_next": "",
    },
    "D3": {
        "stakeholder_scores": {"s1": 1.0, "S2": 2.0},
        "findings": [],
        "gap_to_next": "Name an owner for wellbeing",
        "priority": "critical",
    },
    "D4": {"stakeholder_scores": {}, "findings": []},
}

REPORT = {
    "themes": [
        {"theme": "Data silos", "sources": ["S1", "S2"]},
        {"theme": "Single voice", "sources": ["S1", "S1"]},
        {"theme": "Unknown voice", "sources": ["S1", "S9"]},
    ],
    "contradictions": ["Finance rates connectivity higher than operations"],
    "recommendations": {"D3": "Fund a wellbeing lead."},
    "executive_summary": "The plant is connected but not integrated.",
}


def _model(dimensions=None, report=REPORT):
    """按系统提示词与维度 id 分派的假模型。"""
    dimensions = DIMENSIONS if dimensions is None else dimensions

    async def respond(*, system_prompt, messages):
        prompt = messages[0]["content"]
        if system_prompt == prompts.REPORT_SYSTEM:
            payload = report
        else:
            payload = next(p for dim_id, p in dimensions.items() if f"({dim_id})" in prompt)
        if isinstance(payload, Exception):
            raise payload
        text = payload if isinstance(payload, str) else json.dumps(payload)
        return Completion(text, ModelUsage(100, 40))

    return AsyncMock(side_effect=respond)


def _transcripts():
    return [
        {
            "role": "ops", "status": "completed", "session_ref": "sess-1", "participant": "Ana",
            "history": [
                {"role": "assistant", "content": "How connected are your machines?"},
                {"role": "user", "content": OPS_QUOTE},
                {"role": "assistant", "content": "Anything else?"},
                {"role": "user", "content": "Yes."},
            ],
        },
        StakeholderTranscript(
            role="finance", status="completed", session_ref="sess-2",
            history=(Utterance("assistant", "Tell me about budgets."),
                     Utterance("user", "We fund pilots but never scale them.")),
        ),
        {"status": "completed", "session_ref": "sess-3", "history": []},
        {"role": "ops", "status": "incomplete", "session_ref": "sess-4",
         "history": [{"role": "user", "content": "Half way"}]},
        {"role": "finance", "status": "completed", "session_ref": "sess-5", "history": []},
    ]


class TestHelpers:

    @pytest.mark.parametrize("count, expected", [
        (0, "insufficient"), (1, "low"), (2, "medium"), (3, "medium"), (4, "high"), (9, "high"),
    ])
    def test_confidence_for(self, count, expected):
        assert confidence_for(count) == expected

    @pytest.mark.parametrize("score, expected", [
        (0.0, "critical"), (1.49, "critical"), (1.5, "important"),
        (2.5, "foundational"), (3.49, "foundational"), (3.5, "opportunistic"),
    ])
    def test_priority_for(self, score, expected):
        assert priority_for(score) == expected

    def test_aggregate_methods(self):
        assert aggregate([1.0, 2.0, 4.0], "mean") == pytest.approx(7 / 3)
        assert aggregate([1.0, 2.0, 4.0], "min") == 1.0
        assert aggregate([1.0, 2.0, 4.0, 5.0], "median") == 3.0

    def test_zero_weight_role_does_not_contribute(self):
        engine = SynthesisEngine(AsyncMock(), TAXONOMY)
        _, d1 = TAXONOMY.iter_dimensions()[0]
        analysis = DimensionAnalysis("D1", signals={"S1": 3.0, "S2": 0.0})
        score = engine.score_dimension(d1, analysis, {"S1": "ops", "S2": "observer"})
        assert score.score == 3.0
        assert score.evidence_count == 1
        assert score.confidence == "low"


class TestSynthesize:

    @pytest.mark.asyncio
    async def test_mixed_batch(self):
        assessment = await SynthesisEngine(_model(), TAXONOMY).synthesize(_transcripts())

        assert assessment.transcripts_used == 2
        assert assessment.taxonomy == "plant_readiness"
        assert len(assessment.warnings) == 3
        assert assessment.warnings[0] == "Transcript #3 (sess-3) excluded: malformed (transcript is missing a role)"
        assert "not usable (status 'incomplete', 1 messages)" in assessment.warnings[1]
        assert "not usable (status 'completed', 0 messages)" in assessment.warnings[2]

    @pytest.mark.asyncio
    async def test_role_weighted_dimension_scores(self):
        assessment = await SynthesisEngine(_model(), TAXONOMY).synthesize(_transcripts())

        d1 = assessment.dimension("D1")
        assert d1.score == 3.0  # (2*2 + 5*1) / 3
        assert d1.confidence == "medium"
        assert d1.key_findings == ("Data is siloed",)
        assert d1.supporting_quotes == ("three different systems",)
        assert assessment.dimension("D2").confidence == "low"
        assert assessment.dimension("D3").score == 1.5
        d4 = assessment.dimension("D4")
        assert d4.confidence == "insufficient"
        assert d4.evidence_count == 0

    @pytest.mark.asyncio
    async def test_pillar_aggregation_skips_insufficient(self):
        assessment = await SynthesisEngine(_model(), TAXONOMY).synthesize(_transcripts())

        tech, people = assessment.pillars
        assert tech.score == 3.5
        assert people.score == 1.5  # min over D3 only
        assert assessment.overall_score == pytest.approx(2.7)

    @pytest.mark.asyncio
    async def test_recommendations_lowest_first(self):
        assessment = await SynthesisEngine(_model(), TAXONOMY).synthesize(_transcripts())

        recs = assessment.recommendations
        assert [r.dimension_id for r in recs] == ["D3", "D1", "D2", "D4"]
        assert [r.priority for r in recs] == ["critical", "foundational", "opportunistic", "foundational"]
        assert recs[0].text == "Fund a wellbeing lead."
        assert recs[1].text == "Connect shop-floor data to planning"
        assert recs[3].text.startswith("Gather more stakeholder evidence on Skills")
        assert recs[1].pillar == "Technology"

    @pytest.mark.asyncio
    async def test_themes_need_two_stakeholders(self):
        assessment = await SynthesisEngine(_model(), TAXONOMY).synthesize(_transcripts())

        assert [t.theme for t in assessment.key_themes] == ["Data silos"]
        assert assessment.key_themes[0].stakeholders == ("S1", "S2")
        assert assessment.contradictions == ("Finance rates connectivity higher than operations",)
        assert assessment.executive_summary == "The plant is connected but not integrated."

    @pytest.mark.asyncio
    async def test_stakeholder_perspectives(self):
        assessment = await SynthesisEngine(_model(), TAXONOMY).synthesize(_transcripts())

        ops, finance = assessment.stakeholder_perspectives
        assert (ops.label, ops.role_name, ops.participant) == ("S1", "Operations", "Ana")
        assert ops.key_concerns == (OPS_CONCERN,)
        assert ops.notable_quotes == (OPS_QUOTE,)
        assert finance.key_concerns == ()
        assert finance.notable_quotes == ()

    @pytest.mark.asyncio
    async def test_report_parse_failure_degrades(self):
        engine = SynthesisEngine(_model(report="not json at all"), TAXONOMY)
        assessment = await engine.synthesize(_transcripts())

        assert assessment.key_themes == ()
        assert assessment.executive_summary == ""
        assert any("Themes, recommendations and summary unavailable" in w for w in assessment.warnings)
        recs = {r.dimension_id: r for r in assessment.recommendations}
        assert recs["D3"].text == "Name an owner for wellbeing"

    @pytest.mark.asyncio
    async def test_unparseable_dimension_becomes_insufficient(self):
        dimensions = dict(DIMENSIONS, D2="I could not decide.")
        assessment = await SynthesisEngine(_model(dimensions), TAXONOMY).synthesize(_transcripts())

        assert assessment.dimension("D2").confidence == "insufficient"
        assert any(w.startswith("Dimension D2 analysis could not be parsed") for w in assessment.warnings)

    @pytest.mark.asyncio
    async def test_separate_report_caller(self):
        analyst = _model(report=AssertionError("analyst should not write the report"))
        writer = AsyncMock(return_value=Completion(json.dumps(REPORT), ModelUsage(10, 10)))
        assessment = await SynthesisEngine(analyst, TAXONOMY, report_caller=writer).synthesize(_transcripts())

        writer.assert_awaited_once()
        assert assessment.executive_summary


class TestFailures:

    @pytest.mark.asyncio
    async def test_no_completed_transcripts(self):
        caller = _model()
        with pytest.raises(InsufficientData):
            await SynthesisEngine(caller, TAXONOMY).synthesize(_transcripts()[2:])
        caller.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_input(self):
        with pytest.raises(InsufficientData):
            await SynthesisEngine(_model(), TAXONOMY).synthesize([])

    @pytest.mark.asyncio
    async def test_model_unavailable_propagates(self):
        dimensions = dict(DIMENSIONS, D2=ModelUnavailable("provider down"))
        with pytest.raises(ModelUnavailable):
            await SynthesisEngine(_model(dimensions), TAXONOMY).synthesize(_transcripts())


class TestProgress:

    @pytest.mark.asyncio
    async def test_sync_callback_receives_ordered_events(self):
        events = []
        engine = SynthesisEngine(_model(), TAXONOMY, on_progress=events.append)
        await engine.synthesize(_transcripts(), run_id="run-1")

        assert all(isinstance(e, SynthesisEvent) and e.run_id == "run-1" for e in events)
        assert (events[0].type, events[0].phase) == ("phase_start", "VALIDATE")
        assert (events[-1].type, events[-1].phase, events[-1].progress) == ("phase_end", "REPORT", 1.0)
        skipped = [e for e in events if e.type == "transcript_skipped"]
        assert [e.detail["index"] for e in skipped] == [3, 4, 5]
        scored = [e for e in events if e.type == "dimension_scored"]
        assert [e.dimension_id for e in scored] == ["D1", "D2", "D3", "D4"]
        progress = [e.progress for e in events]
        assert progress == sorted(progress)

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self):
        callback = AsyncMock()
        await SynthesisEngine(_model(), TAXONOMY, on_progress=callback).synthesize(_transcripts())
        assert callback.await_count > 0


class TestDefaultTaxonomy:

    @pytest.mark.asyncio
    async def test_industry_role_weights(self):
        taxonomy = default_taxonomy()
        signals = {dim.id: {"stakeholder_scores": {"S1": 2, "S2": 4}} for _, dim in taxonomy.iter_dimensions()}
        transcripts = [
            StakeholderTranscript(role="managing_director", status="completed",
                                  history=(Utterance("user", "We have a plan."),)),
            StakeholderTranscript(role="it_operations", status="completed",
                                  history=(Utterance("user", "The network is old."),)),
        ]
        assessment = await SynthesisEngine(_model(signals, report={"themes": [], "recommendations": {}}), taxonomy).synthesize(transcripts)

        # T1: it_operations weighs 1.5 -> (2*1 + 4*1.5) / 2.5
        assert assessment.dimension("T1").score == pytest.approx(3.2)
        # O2: managing_director weighs 2.0 -> (2*2 + 4*1) / 3
        assert assessment.dimension("O2").score == pytest.approx(2.67)
        assert len(assessment.pillars) == 3

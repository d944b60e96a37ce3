import json

import pytest
from pydantic import ValidationError

from conftest import analysis_json, make_task, report_json
from resonance.models.task import BatchAnalysis, FinalReport, ResearchPlan


def test_plan_accepts_loose_shapes():
    plan = ResearchPlan.model_validate(
        {
            "planSummary": "s",
            "subQuestions": [{"id": "a", "question": "q", "priority": "HIGH"}],
            "dataSources": ["Reddit"],
            "collectionStrategy": "Top posts of the month",
            "analysisFocus": "hooks",
        }
    )
    assert plan.sub_questions[0].priority == "high"
    assert plan.data_sources[0].name == "Reddit"
    assert plan.collection_strategy.approach == "Top posts of the month"
    assert plan.analysis_focus.dimensions == ["hooks"]


def test_plan_rejects_unknown_priority():
    with pytest.raises(ValidationError):
        ResearchPlan.model_validate(
            {"planSummary": "s", "subQuestions": [{"id": "a", "question": "q", "priority": "urgent"}]}
        )


def test_analysis_accepts_string_lists():
    analysis = BatchAnalysis.model_validate(
        {
            "subQuestionId": "a",
            "insightSummary": "s",
            "patterns": [{"pattern": "p", "evidenceSnippets": ["a quote"]}],
            "resonantElements": {"hooks": ["Day 1 of"]},
            "objectionsAndFears": ["price"],
            "desiresAndOutcomes": [],
        }
    )
    assert analysis.patterns[0].evidence_snippets[0].quote == "a quote"
    assert analysis.objections_and_fears[0].theme == "price"


def test_placeholder_is_degraded():
    entry = BatchAnalysis.placeholder("sq1", "timed out")
    assert entry.degraded
    assert entry.failure_reason == "timed out"
    assert entry.patterns == []


def test_snapshot_uses_camel_case():
    snapshot = make_task().snapshot()
    assert snapshot["clarifiedScope"].startswith("Find the hooks")
    assert snapshot["ownerId"] == "user-1"
    assert snapshot["batchAnalyses"] == {}
    assert snapshot["status"] == "running"
    assert snapshot["version"] == 1


@pytest.mark.parametrize("missing", ["patterns", "resonantElements", "desiresAndOutcomes"])
def test_analysis_requires_every_section(missing):
    payload = json.loads(analysis_json("sq1"))
    del payload[missing]
    with pytest.raises(ValidationError):
        BatchAnalysis.model_validate(payload)


@pytest.mark.parametrize("missing", ["resonanceFindings", "messagingRecommendations", "nextSteps"])
def test_report_requires_every_section(missing):
    payload = json.loads(report_json())
    del payload[missing]
    with pytest.raises(ValidationError):
        FinalReport.model_validate(payload)


def test_report_coverage_notes_default_to_empty():
    assert FinalReport.model_validate(json.loads(report_json())).coverage_notes == []

import json

import pytest

from conftest import analysis_json, make_task, plan_json, report_json
from resonance.models.task import BatchAnalysis, FinalReport, ResearchPlan, TaskStatus
from resonance.services.progress import report_progress


def _task_with(analyzed, total=3, **overrides):
    ids = [f"sq{i}" for i in range(1, total + 1)]
    plan = ResearchPlan.model_validate(json.loads(plan_json(ids)))
    analyses = {
        sid: BatchAnalysis.model_validate(json.loads(analysis_json(sid))) for sid in ids[:analyzed]
    }
    return make_task(plan=plan, batch_analyses=analyses, **overrides)


def test_no_plan_is_zero():
    report = report_progress(make_task())
    assert report.progress == 0
    assert report.status_message == "Planning research…"


@pytest.mark.parametrize(
    "analyzed,total,expected",
    [(0, 3, 10), (1, 3, 33), (2, 3, 56), (3, 3, 80), (2, 7, 30), (1, 1, 80)],
)
def test_analysis_share_rounds_down(analyzed, total, expected):
    assert report_progress(_task_with(analyzed, total)).progress == expected


def test_cached_progress_is_ignored():
    assert report_progress(_task_with(0, progress=95)).progress == 10


def test_completed_is_100():
    report = FinalReport.model_validate(json.loads(report_json()))
    task = _task_with(3, status=TaskStatus.COMPLETED, final_report=report)
    assert report_progress(task).progress == 100
    assert report_progress(task).status_message == "Research completed."


def test_failed_keeps_partial_progress():
    task = _task_with(2, status=TaskStatus.FAILED, error_message="boom")
    report = report_progress(task)
    assert report.progress == 56
    assert report.status_message == "Research failed."

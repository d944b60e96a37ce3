"""Progress derived from stored task state."""
from __future__ import annotations

from dataclasses import dataclass

from resonance.models.task import ResearchTask, TaskStatus

PLAN_WEIGHT = 10
ANALYSIS_WEIGHT = 70

PLANNING_MESSAGE = "Planning research…"
COLLECTING_MESSAGE = "Collecting signals…"
SYNTHESIZING_MESSAGE = "Synthesizing final report…"
COMPLETED_MESSAGE = "Research completed."
FAILED_MESSAGE = "Research failed."


@dataclass(frozen=True)
class ProgressReport:
    progress: int
    status_message: str


def _partial_progress(task: ResearchTask) -> int:
    if task.plan is None:
        return 0
    total = len(task.plan.sub_questions)
    analyzed = sum(1 for sid in task.plan.sub_question_ids if sid in task.batch_analyses)
    return PLAN_WEIGHT + (ANALYSIS_WEIGHT * analyzed) // total


def report_progress(task: ResearchTask) -> ProgressReport:
    """Compute percentage and status message; never reads the cached ``progress``."""
    if task.status == TaskStatus.COMPLETED:
        return ProgressReport(100, COMPLETED_MESSAGE)
    if task.status == TaskStatus.FAILED:
        return ProgressReport(_partial_progress(task), FAILED_MESSAGE)
    if task.plan is None:
        return ProgressReport(0, PLANNING_MESSAGE)
    if task.pending_sub_question_ids:
        return ProgressReport(_partial_progress(task), COLLECTING_MESSAGE)
    return ProgressReport(_partial_progress(task), SYNTHESIZING_MESSAGE)

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from resonance.agents.analyzer import AnalyzeStage
from resonance.agents.planner import PlanStage
from resonance.agents.synthesizer import SynthesizeStage
from resonance.errors import ConcurrencyConflict, ExternalServiceError, SchemaError
from resonance.models.task import ResearchTask, TaskStatus
from resonance.services.logger import log_stage, logger
from resonance.services.progress import report_progress
from resonance.services.projection import ProjectionSync
from resonance.services.task_store import TaskStore

PLAN_FAILED_PREFIX = "Research plan generation failed: "
SYNTHESIS_FAILED_PREFIX = "Final report synthesis failed: "


class Stage(str, Enum):
    PLAN = "plan"
    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    FINALIZE = "finalize"
    NONE = "none"


@dataclass(frozen=True)
class NextStep:
    stage: Stage
    sub_question_id: str | None = None


def select_next_step(task: ResearchTask) -> NextStep:
    """Pick the next unit of work from stored data alone."""
    if task.is_terminal:
        return NextStep(Stage.NONE)
    if task.plan is None:
        return NextStep(Stage.PLAN)
    pending = task.pending_sub_question_ids
    if pending:
        return NextStep(Stage.ANALYZE, pending[0])
    if task.final_report is None:
        return NextStep(Stage.SYNTHESIZE)
    # Report stored but status not flipped: repair.
    return NextStep(Stage.FINALIZE)


class ProgressionOrchestrator:
    """Advances a research task by exactly one stage per call.

    Flow per call:
      1. Load the task; terminal tasks are returned unchanged
      2. Derive the next stage from stored state
      3. Run that stage
      4. Commit through the store's version guard; a lost race discards
         the result and returns whatever is stored now
      5. Mirror the committed state into the projection (best effort)

    Safe to call concurrently for the same task. Duplicate external calls
    can happen; duplicate writes cannot.
    """

    def __init__(
        self,
        store: TaskStore,
        planner: PlanStage | None = None,
        analyzer: AnalyzeStage | None = None,
        synthesizer: SynthesizeStage | None = None,
        projection: ProjectionSync | None = None,
    ):
        self.store = store
        self.planner = planner or PlanStage()
        self.analyzer = analyzer or AnalyzeStage()
        self.synthesizer = synthesizer or SynthesizeStage()
        self.projection = projection

    async def advance(self, task_id: str, owner_id: str | None = None) -> ResearchTask:
        task = await self.store.get(task_id, owner_id)
        step = select_next_step(task)
        if step.stage == Stage.NONE:
            return task

        log_stage(task.id, step.stage.value, "started", {"version": task.version})
        if step.stage == Stage.PLAN:
            changes = await self._plan(task)
        elif step.stage == Stage.ANALYZE:
            changes = await self._analyze(task, step.sub_question_id)
        elif step.stage == Stage.SYNTHESIZE:
            changes = await self._synthesize(task)
        else:
            changes = {
                "status": TaskStatus.COMPLETED,
                "result_summary": task.final_report.executive_summary,
            }

        return await self._commit(task, step, changes)

    async def _plan(self, task: ResearchTask) -> dict[str, Any]:
        try:
            plan = await self.planner.run(task)
        except (SchemaError, ExternalServiceError) as exc:
            return self._failure(task, Stage.PLAN, PLAN_FAILED_PREFIX + str(exc))
        log_stage(task.id, Stage.PLAN.value, "completed", {"sub_questions": plan.sub_question_ids})
        return {"plan": plan}

    async def _analyze(self, task: ResearchTask, sub_question_id: str) -> dict[str, Any]:
        sub_question = next(sq for sq in task.plan.sub_questions if sq.id == sub_question_id)
        analysis = await self.analyzer.run(task, sub_question)
        log_stage(
            task.id,
            Stage.ANALYZE.value,
            "degraded" if analysis.degraded else "completed",
            {
                "sub_question_id": sub_question_id,
                "snippets": analysis.snippet_count,
                "failure_reason": analysis.failure_reason,
            },
        )
        return {"batch_analyses": {**task.batch_analyses, sub_question_id: analysis}}

    async def _synthesize(self, task: ResearchTask) -> dict[str, Any]:
        try:
            report = await self.synthesizer.run(task)
        except (SchemaError, ExternalServiceError) as exc:
            return self._failure(task, Stage.SYNTHESIZE, SYNTHESIS_FAILED_PREFIX + str(exc))
        log_stage(
            task.id,
            Stage.SYNTHESIZE.value,
            "completed",
            {"coverage_notes": len(report.coverage_notes)},
        )
        return {
            "final_report": report,
            "result_summary": report.executive_summary,
            "status": TaskStatus.COMPLETED,
        }

    @staticmethod
    def _failure(task: ResearchTask, stage: Stage, message: str) -> dict[str, Any]:
        log_stage(task.id, stage.value, "failed", {"error": message})
        return {
            "status": TaskStatus.FAILED,
            "error_message": message,
            "result_summary": message,
        }

    async def _commit(
        self, task: ResearchTask, step: NextStep, changes: dict[str, Any]
    ) -> ResearchTask:
        prospective = task.model_copy(update=changes)
        changes["progress"] = report_progress(prospective).progress

        try:
            updated = await self.store.update(task.id, task.version, changes)
        except ConcurrencyConflict as exc:
            # Another caller committed first; its result stands.
            logger.debug(f"Discarding {step.stage.value} result for task {task.id}: {exc}")
            return await self.store.get(task.id)

        if self.projection is not None:
            await self.projection.sync(updated)
        return updated

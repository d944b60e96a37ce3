from __future__ import annotations

from resonance.agents.base import BaseStage
from resonance.models.task import FinalReport, ResearchTask


def coverage_notes(task: ResearchTask) -> list[str]:
    """One note per degraded sub-question, in plan order."""
    if task.plan is None:
        return []
    notes = []
    for sub_question in task.plan.sub_questions:
        analysis = task.batch_analyses.get(sub_question.id)
        if analysis is not None and analysis.degraded:
            notes.append(
                f"Sub-question {sub_question.id} ({sub_question.question}) could not be "
                f"analyzed: {analysis.failure_reason or 'unknown error'}"
            )
    return notes


class SynthesizeStage(BaseStage):
    name = "synthesize"
    schema_tag = "final_report"
    prompt_key = "synthesizer.system_prompt"

    async def run(self, task: ResearchTask) -> FinalReport:
        if task.plan is None:
            raise ValueError(f"Task {task.id} has no plan to synthesize")

        analyses = [
            task.batch_analyses[sid].model_dump(mode="json", by_alias=True)
            for sid in task.plan.sub_question_ids
        ]
        result = await self._generate(
            {
                "clarifiedScope": task.clarified_scope,
                "parameters": task.parameters,
                "plan": task.plan.model_dump(mode="json", by_alias=True),
                "analyses": analyses,
            },
            FinalReport,
        )
        report = self._require(result)
        return report.model_copy(update={"coverage_notes": coverage_notes(task)})

from __future__ import annotations

from resonance.agents.base import BaseStage
from resonance.models.task import ResearchPlan, ResearchTask
from resonance.services.logger import logger

MIN_SUB_QUESTIONS = 3
MAX_SUB_QUESTIONS = 7


class PlanStage(BaseStage):
    """Decompose the clarified scope into a research plan.

    Raises ``SchemaError`` or ``ExternalServiceError``; the orchestrator
    turns either into a terminal failure. Plans longer than
    ``MAX_SUB_QUESTIONS`` are cut to the first ``MAX_SUB_QUESTIONS``.
    """

    name = "plan"
    schema_tag = "research_plan"
    prompt_key = "planner.system_prompt"

    async def run(self, task: ResearchTask) -> ResearchPlan:
        result = await self._generate(
            {
                "clarifiedScope": task.clarified_scope,
                "parameters": task.parameters,
            },
            ResearchPlan,
            min_sub_questions=MIN_SUB_QUESTIONS,
            max_sub_questions=MAX_SUB_QUESTIONS,
        )
        plan = self._require(result)

        if len(plan.sub_questions) > MAX_SUB_QUESTIONS:
            logger.info(
                f"Plan for task {task.id} had {len(plan.sub_questions)} sub-questions; "
                f"keeping the first {MAX_SUB_QUESTIONS}"
            )
            plan = plan.model_copy(update={"sub_questions": plan.sub_questions[:MAX_SUB_QUESTIONS]})
        return plan

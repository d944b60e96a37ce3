from __future__ import annotations

import asyncio

from resonance.agents.base import BaseStage
from resonance.config import settings
from resonance.models.task import BatchAnalysis, ResearchTask, SubQuestion
from resonance.services.generation import GenerationOk, TextGenerationService
from resonance.services.logger import logger
from resonance.tools.snippet_provider import EvidenceRetriever, Snippet, get_retriever


class AnalyzeStage(BaseStage):
    """Analyze evidence for one sub-question.

    Never raises for retrieval or generation problems: a failed analysis is
    returned as a degraded placeholder so the task can still complete.
    """

    name = "analyze"
    schema_tag = "batch_analysis"
    prompt_key = "analyzer.system_prompt"

    def __init__(
        self,
        service: TextGenerationService | None = None,
        retriever: EvidenceRetriever | None = None,
        timeout: float | None = None,
        retrieval_timeout: float | None = None,
        max_snippets: int | None = None,
    ):
        super().__init__(service, timeout)
        self.retriever = retriever or get_retriever()
        self.retrieval_timeout = (
            settings.retrieval_timeout_seconds if retrieval_timeout is None else retrieval_timeout
        )
        self.max_snippets = max_snippets or settings.analyze_max_snippets

    async def _retrieve(self, task: ResearchTask, sub_question: SubQuestion) -> list[Snippet]:
        snippets = await asyncio.wait_for(
            self.retriever.retrieve(sub_question, task.parameters, self.max_snippets),
            timeout=self.retrieval_timeout,
        )
        return list(snippets)[: self.max_snippets]

    async def run(self, task: ResearchTask, sub_question: SubQuestion) -> BatchAnalysis:
        try:
            snippets = await self._retrieve(task, sub_question)
        except asyncio.TimeoutError:
            reason = f"evidence retrieval timed out after {self.retrieval_timeout:g}s"
            return BatchAnalysis.placeholder(sub_question.id, reason)
        except Exception as exc:
            return BatchAnalysis.placeholder(sub_question.id, f"evidence retrieval failed: {exc}")

        result = await self._generate(
            {
                "clarifiedScope": task.clarified_scope,
                "parameters": task.parameters,
                "subQuestion": {"id": sub_question.id, "question": sub_question.question},
                "snippets": [s.to_payload() for s in snippets],
            },
            BatchAnalysis,
            sub_question_id=sub_question.id,
        )
        if not isinstance(result, GenerationOk):
            return BatchAnalysis.placeholder(
                sub_question.id, result.reason, snippet_count=len(snippets)
            )

        analysis = result.value
        if analysis.sub_question_id != sub_question.id:
            logger.info(
                f"Analysis for task {task.id} answered '{analysis.sub_question_id}', "
                f"storing it under '{sub_question.id}'"
            )
        # Engine-owned fields are never taken from the model output.
        return analysis.model_copy(
            update={
                "sub_question_id": sub_question.id,
                "degraded": False,
                "failure_reason": None,
                "snippet_count": len(snippets),
            }
        )

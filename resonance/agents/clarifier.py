"""Turns a rough research idea into clarifying questions, then a final scope."""
from __future__ import annotations

from resonance.agents.base import BaseStage
from resonance.errors import SchemaError
from resonance.models.schemas import ClarifiedScope, ClarifyQuestions, RequestMessage

MIN_QUESTIONS = 3
MAX_QUESTIONS = 7


class QuestionStage(BaseStage):
    name = "clarify"
    schema_tag = "clarify_questions"
    prompt_key = "clarifier.questions_prompt"

    async def run(self, title: str, description: str) -> ClarifyQuestions:
        result = await self._generate(
            {"title": title, "description": description},
            ClarifyQuestions,
            min_questions=MIN_QUESTIONS,
            max_questions=MAX_QUESTIONS,
        )
        questions = self._require(result)
        cleaned = [q.strip() for q in questions.initial_questions if q.strip()]
        if len(cleaned) < MIN_QUESTIONS:
            raise SchemaError(
                f"Clarify response had {len(cleaned)} usable questions, "
                f"expected at least {MIN_QUESTIONS}",
                diagnostics=[f"initialQuestions: {questions.initial_questions!r}"],
            )
        return questions.model_copy(update={"initial_questions": cleaned[:MAX_QUESTIONS]})


class ScopeStage(BaseStage):
    name = "clarify_continue"
    schema_tag = "clarify_scope"
    prompt_key = "clarifier.scope_prompt"

    async def run(
        self, title: str, description: str, messages: list[RequestMessage]
    ) -> ClarifiedScope:
        result = await self._generate(
            {
                "title": title,
                "description": description,
                "messages": [m.model_dump() for m in messages],
            },
            ClarifiedScope,
        )
        return self._require(result)


class Clarifier:
    def __init__(self, service=None):
        self.questions = QuestionStage(service)
        self.scope = ScopeStage(service)

    async def ask(self, title: str, description: str) -> ClarifyQuestions:
        return await self.questions.run(title, description)

    async def finalize(
        self, title: str, description: str, messages: list[RequestMessage]
    ) -> ClarifiedScope:
        return await self.scope.run(title, description, messages)

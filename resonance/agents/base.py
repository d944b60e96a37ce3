from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel

from resonance.errors import ExternalServiceError, SchemaError
from resonance.llm_client import OpenRouterTextService
from resonance.services.generation import (
    GenerationOk,
    GenerationResult,
    SchemaFailure,
    ServiceFailure,
    TextGenerationService,
    generate,
)
from resonance.services.prompt_store import render_prompt

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseStage:
    """One unit of orchestrated work backed by a single generation call.

    Subclasses set ``name``, ``schema_tag`` and ``prompt_key`` and implement
    ``run``. ``_generate`` returns the tagged result; ``_require`` turns a
    failure into the matching domain exception.
    """

    name: str = "base"
    schema_tag: str = ""
    prompt_key: str = ""

    def __init__(self, service: TextGenerationService | None = None, timeout: float | None = None):
        self.service = service or OpenRouterTextService()
        self.timeout = timeout

    def system_prompt(self, **values: Any) -> str:
        return render_prompt(self.prompt_key, **values)

    async def _generate(
        self, payload: dict[str, Any], model_cls: type[ModelT], **prompt_values: Any
    ) -> GenerationResult[ModelT]:
        return await generate(
            self.service,
            self.system_prompt(**prompt_values),
            payload,
            self.schema_tag,
            model_cls,
            timeout=self.timeout,
        )

    @staticmethod
    def _require(result: GenerationResult[ModelT]) -> ModelT:
        if isinstance(result, GenerationOk):
            return result.value
        if isinstance(result, SchemaFailure):
            raise SchemaError(result.reason, raw=result.raw, diagnostics=result.diagnostics)
        if isinstance(result, ServiceFailure):
            raise ExternalServiceError(result.reason)
        raise TypeError(f"Unexpected generation result: {result!r}")

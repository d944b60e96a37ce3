"""Generation boundary: call the text service and validate its output once.

Every stage goes through ``generate``, which never raises for service or
schema problems. It returns one of three tagged results instead.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from resonance.config import settings

ModelT = TypeVar("ModelT", bound=BaseModel)


class TextGenerationService(Protocol):
    async def complete(self, system_prompt: str, user_payload: Any, schema_tag: str) -> str:
        ...


@dataclass(frozen=True)
class GenerationOk(Generic[ModelT]):
    value: ModelT


@dataclass(frozen=True)
class SchemaFailure:
    raw: str
    diagnostics: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        detail = "; ".join(self.diagnostics[:3]) or "response did not match the expected structure"
        return f"invalid response structure: {detail}"


@dataclass(frozen=True)
class ServiceFailure:
    cause: str

    @property
    def reason(self) -> str:
        return self.cause


GenerationResult = Union[GenerationOk[ModelT], SchemaFailure, ServiceFailure]


def _extract_json_object(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


def _format_errors(exc: PydanticValidationError) -> list[str]:
    diagnostics = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        diagnostics.append(f"{location}: {error.get('msg', 'invalid value')}")
    return diagnostics


def validate_payload(raw: str, model_cls: type[ModelT]) -> GenerationOk[ModelT] | SchemaFailure:
    """Decode ``raw`` as a JSON object and validate it against ``model_cls``."""
    try:
        payload = _extract_json_object(raw)
    except json.JSONDecodeError as exc:
        return SchemaFailure(raw=raw, diagnostics=[f"not valid JSON: {exc.msg}"])
    try:
        return GenerationOk(model_cls.model_validate(payload))
    except PydanticValidationError as exc:
        return SchemaFailure(raw=raw, diagnostics=_format_errors(exc))
    except ValueError as exc:
        return SchemaFailure(raw=raw, diagnostics=[str(exc)])


async def generate(
    service: TextGenerationService,
    system_prompt: str,
    user_payload: Any,
    schema_tag: str,
    model_cls: type[ModelT],
    timeout: float | None = None,
) -> GenerationResult[ModelT]:
    limit = settings.llm_timeout_seconds if timeout is None else timeout
    try:
        raw = await asyncio.wait_for(
            service.complete(system_prompt, user_payload, schema_tag),
            timeout=limit,
        )
    except asyncio.TimeoutError:
        return ServiceFailure(cause=f"text generation timed out after {limit:g}s")
    except Exception as exc:
        return ServiceFailure(cause=f"text generation failed: {exc}")

    return validate_payload(raw or "", model_cls)

"""OpenRouter-only text generation client (OpenAI-compatible SDK)."""
from __future__ import annotations

import json
import time
from typing import Any

from resonance.config import settings
from resonance.services.logger import log_llm_call

# Stage schema tags mapped to their optional model overrides.
_MODEL_OVERRIDES = {
    "research_plan": "planner_model",
    "final_report": "synthesis_model",
    "clarify_questions": "clarify_model",
    "clarify_scope": "clarify_model",
}


def get_client() -> Any:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        max_retries=0,
    )


def get_model(schema_tag: str | None = None) -> str:
    """Get the model id for a schema tag, falling back to the active default."""
    override_attr = _MODEL_OVERRIDES.get(schema_tag or "")
    if override_attr:
        override = getattr(settings, override_attr, "")
        if override:
            return override
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: Any | None = None


def client() -> Any:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def _temperature_for_model(model: str) -> float:
    # Some OpenAI GPT-5-compatible gateways only accept temperature=1.
    if "gpt-5" in (model or "").lower():
        return 1
    return settings.llm_temperature


class OpenRouterTextService:
    """Text generation service: ``complete(system_prompt, user_payload, schema_tag)``.

    Requests JSON mode and returns the raw message text. Decoding and
    validation happen in the caller. No retries are made here; the SDK's
    own retry loop is disabled in ``get_client``.
    """

    def __init__(self, openai_client: Any | None = None):
        self._client = openai_client

    @property
    def _sdk(self) -> Any:
        if self._client is None:
            self._client = client()
        return self._client

    async def complete(self, system_prompt: str, user_payload: Any, schema_tag: str) -> str:
        model = get_model(schema_tag)
        if isinstance(user_payload, str):
            user_content = user_payload
        else:
            user_content = json.dumps(user_payload, ensure_ascii=False, default=str)

        started = time.monotonic()
        try:
            response = await self._sdk.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                max_tokens=settings.llm_max_tokens,
                temperature=_temperature_for_model(model),
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            log_llm_call(
                model=model,
                caller=schema_tag,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="failed",
                error=str(exc),
            )
            raise

        usage = getattr(response, "usage", None)
        log_llm_call(
            model=model,
            caller=schema_tag,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""

"""Evidence retrieval for the Analyze stage."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from resonance.config import settings
from resonance.models.task import SubQuestion
from resonance.tools import jina_search


@dataclass
class Snippet:
    id: str
    text: str
    source: str = ""
    url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "source": self.source,
            "url": self.url,
            "metadata": self.metadata,
        }


class EvidenceRetriever(Protocol):
    async def retrieve(
        self, sub_question: SubQuestion, parameters: dict[str, Any], limit: int
    ) -> list[Snippet]: ...


class NullRetriever:
    """Returns no evidence; Analyze then runs on the model's prior knowledge."""

    async def retrieve(
        self, sub_question: SubQuestion, parameters: dict[str, Any], limit: int
    ) -> list[Snippet]:
        return []


def build_query(sub_question: SubQuestion, parameters: dict[str, Any]) -> str:
    parts = [sub_question.question]
    platforms = parameters.get("platforms")
    if isinstance(platforms, list) and platforms:
        parts.append(" OR ".join(str(p) for p in platforms[:3]))
    audience = parameters.get("targetAudience")
    if isinstance(audience, str) and audience:
        parts.append(audience)
    return " ".join(parts)


class JinaSnippetRetriever:
    async def retrieve(
        self, sub_question: SubQuestion, parameters: dict[str, Any], limit: int
    ) -> list[Snippet]:
        results = await jina_search.search(
            build_query(sub_question, parameters),
            max_results=min(limit, settings.search_max_results),
        )
        return [
            Snippet(
                id=f"{sub_question.id}-s{i}",
                text=r.content or r.title,
                source="jina",
                url=r.url,
                metadata={"title": r.title, "published": r.published},
            )
            for i, r in enumerate(results, start=1)
        ]


def get_retriever() -> EvidenceRetriever:
    if settings.jina_api_key:
        return JinaSnippetRetriever()
    return NullRetriever()

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from resonance.config import settings

JINA_SEARCH_URL = "https://s.jina.ai/"

_RESULT_FIELD = re.compile(
    r"\[(\d+)\]\s+(Title|URL Source|Description|Published Time):\s*(.*?)(?=\[\d+\]|$)",
    re.DOTALL,
)


@dataclass
class SearchResult:
    """Normalized search result from Jina AI search."""
    title: str
    url: str
    content: str
    published: str = ""


def _to_result(fields: dict[str, str]) -> SearchResult:
    return SearchResult(
        title=fields.get("Title", ""),
        url=fields.get("URL Source", ""),
        content=fields.get("Description", ""),
        published=fields.get("Published Time", ""),
    )


def parse_search_response(text: str, max_results: int = 10) -> list[SearchResult]:
    """Parse Jina's plain text response.

    Format:
    [1] Title: ...
    [1] URL Source: ...
    [1] Description: ...

    [2] Title: ...
    """
    blocks: dict[int, dict[str, str]] = {}
    for index_str, field, value in _RESULT_FIELD.findall(text):
        blocks.setdefault(int(index_str), {})[field] = value.strip()

    results = [_to_result(blocks[index]) for index in sorted(blocks)]
    return [r for r in results if r.title or r.content][:max_results]


async def search(
    query: str,
    *,
    max_results: int | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """Run a web search through Jina (``GET https://s.jina.ai/?q=<query>``)."""
    api_key = settings.jina_api_key
    if not api_key:
        raise ValueError("JINA_API_KEY not configured")

    limit = max_results or settings.search_max_results
    url = f"{JINA_SEARCH_URL}?q={quote(query, safe='')}"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "X-Respond-With": "no-content",
    }

    if http_client is not None:
        response = await http_client.get(url, headers=headers, timeout=settings.retrieval_timeout_seconds)
    else:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, headers=headers, timeout=settings.retrieval_timeout_seconds)
    response.raise_for_status()

    # Jina search returns plain text, not JSON
    return parse_search_response(response.text, limit)

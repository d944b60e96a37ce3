"""Shared fakes for the research engine tests."""
from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Callable

import pytest

from resonance.agents.analyzer import AnalyzeStage
from resonance.agents.orchestrator import ProgressionOrchestrator
from resonance.agents.planner import PlanStage
from resonance.agents.synthesizer import SynthesizeStage
from resonance.models.task import ResearchTask
from resonance.services.projection import InMemoryProjectionStore, ProjectionSync
from resonance.services.task_store import InMemoryTaskStore
from resonance.tools.snippet_provider import NullRetriever, Snippet


def plan_json(ids: list[str] | None = None, **overrides: Any) -> str:
    ids = ids if ids is not None else ["sq1", "sq2", "sq3"]
    payload = {
        "planSummary": "Map what resonates with indie hackers on X and Reddit.",
        "subQuestions": [
            {
                "id": sid,
                "question": f"Question {sid}?",
                "rationale": "Needed for the report.",
                "priority": "high",
            }
            for sid in ids
        ],
        "dataSources": [
            {"id": "src1", "type": "forum", "name": "Reddit", "intendedUse": "Threads"}
        ],
        "collectionStrategy": {"approach": "Top posts", "samplingGuidelines": "", "filters": ""},
        "analysisFocus": {"resonanceSignals": ["upvotes"], "dimensions": [], "expectedDeliverables": []},
    }
    payload.update(overrides)
    return json.dumps(payload)


def analysis_json(sub_question_id: str, summary: str = "Build-in-public posts win.") -> str:
    return json.dumps(
        {
            "subQuestionId": sub_question_id,
            "insightSummary": summary,
            "patterns": [
                {
                    "pattern": "Revenue screenshots",
                    "evidenceSnippets": [{"snippetId": "s1", "quote": "hit $1k MRR"}],
                    "implication": "Lead with numbers",
                }
            ],
            "resonantElements": {
                "hooks": ["I quit my job"],
                "phrases": [],
                "formats": ["thread"],
                "emotionalTones": ["hopeful"],
            },
            "objectionsAndFears": [{"theme": "Time", "example": "No time to ship"}],
            "desiresAndOutcomes": [{"theme": "Freedom", "example": "Work from anywhere"}],
        }
    )


def report_json(summary: str = "Indie hackers respond to transparent numbers.") -> str:
    return json.dumps(
        {
            "executiveSummary": summary,
            "audienceSnapshot": {
                "whoTheyAre": "Solo founders",
                "keyMotivations": ["independence"],
                "keyFrustrations": ["distribution"],
            },
            "resonanceFindings": [
                {
                    "theme": "Numbers beat promises",
                    "description": "Concrete metrics get engagement.",
                    "supportingEvidence": ["sq1 pattern"],
                    "implications": ["Share MRR"],
                }
            ],
            "channelAndFormatInsights": {"byPlatform": [], "crossPlatformPatterns": []},
            "messagingRecommendations": {
                "coreNarratives": ["Build in public"],
                "recommendedHooks": [],
                "languageToUse": [],
                "languageToAvoid": [],
            },
            "objectionsAndResponses": [],
            "nextSteps": ["Test a revenue thread"],
        }
    )


Handler = Callable[[Any], Any]


class FakeTextService:
    """Scripted text generation keyed by schema tag.

    A handler may be a string, an exception instance, a list consumed in
    order, or a (sync or async) callable receiving the user payload.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, Any]] = []

    def calls_for(self, schema_tag: str) -> list[Any]:
        return [payload for tag, payload in self.calls if tag == schema_tag]

    async def complete(self, system_prompt: str, user_payload: Any, schema_tag: str) -> str:
        self.calls.append((schema_tag, user_payload))
        handler = self.responses[schema_tag]
        if isinstance(handler, list):
            handler = handler.pop(0)
        if callable(handler):
            handler = handler(user_payload)
            if inspect.isawaitable(handler):
                handler = await handler
        if isinstance(handler, BaseException):
            raise handler
        return handler


def default_responses() -> dict[str, Any]:
    return {
        "research_plan": plan_json(),
        "batch_analysis": lambda payload: analysis_json(payload["subQuestion"]["id"]),
        "final_report": report_json(),
    }


async def sleep_forever(payload: Any) -> str:
    await asyncio.sleep(3600)
    return ""


class StaticRetriever:
    def __init__(self, snippets: list[Snippet] | None = None):
        self.snippets = snippets if snippets is not None else [
            Snippet(id="s1", text="hit $1k MRR after 6 months", source="reddit"),
        ]
        self.calls = 0

    async def retrieve(self, sub_question, parameters, limit):
        self.calls += 1
        return self.snippets[:limit]


def make_task(**overrides: Any) -> ResearchTask:
    fields = {
        "owner_id": "user-1",
        "title": "Indie hacker resonance",
        "description": "What content resonates with indie hackers?",
        "clarified_scope": "Find the hooks and formats indie hackers engage with on X and Reddit.",
        "parameters": {"platforms": ["X", "Reddit"], "targetAudience": "indie hackers"},
    }
    fields.update(overrides)
    return ResearchTask(**fields)


def build_orchestrator(
    store: InMemoryTaskStore,
    service: FakeTextService,
    retriever: Any = None,
    projection: ProjectionSync | None = None,
    timeout: float = 1.0,
) -> ProgressionOrchestrator:
    return ProgressionOrchestrator(
        store,
        planner=PlanStage(service, timeout=timeout),
        analyzer=AnalyzeStage(
            service,
            retriever or NullRetriever(),
            timeout=timeout,
            retrieval_timeout=timeout,
        ),
        synthesizer=SynthesizeStage(service, timeout=timeout),
        projection=projection,
    )


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def projection(store) -> ProjectionSync:
    return ProjectionSync(InMemoryProjectionStore(), store)


@pytest.fixture
def service() -> FakeTextService:
    return FakeTextService(default_responses())

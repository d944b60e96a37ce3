from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from resonance.agents.analyzer import AnalyzeStage
from resonance.agents.clarifier import Clarifier
from resonance.agents.orchestrator import ProgressionOrchestrator
from resonance.agents.planner import PlanStage
from resonance.agents.synthesizer import SynthesizeStage
from resonance.config import settings
from resonance.services.database import db_available
from resonance.services.generation import TextGenerationService
from resonance.services.projection import (
    InMemoryProjectionStore,
    PostgresProjectionStore,
    ProjectionSync,
)
from resonance.services.rate_limit import (
    InMemoryCounterStore,
    PostgresCounterStore,
    TaskCreationLimiter,
)
from resonance.services.task_store import InMemoryTaskStore, PostgresTaskStore
from resonance.tools.snippet_provider import EvidenceRetriever


@dataclass
class ResearchServices:
    store: object
    projection: ProjectionSync
    limiter: TaskCreationLimiter
    orchestrator: ProgressionOrchestrator
    clarifier: Clarifier


def build_services(
    service: TextGenerationService | None = None,
    retriever: EvidenceRetriever | None = None,
    use_database: bool | None = None,
) -> ResearchServices:
    """Wire stores, stages and the orchestrator from settings."""
    persistent = db_available() if use_database is None else use_database
    if persistent:
        store = PostgresTaskStore()
        projections = PostgresProjectionStore()
        counters = PostgresCounterStore()
    else:
        store = InMemoryTaskStore()
        projections = InMemoryProjectionStore()
        counters = InMemoryCounterStore()

    projection = ProjectionSync(projections, store)
    orchestrator = ProgressionOrchestrator(
        store,
        planner=PlanStage(service),
        analyzer=AnalyzeStage(service, retriever),
        synthesizer=SynthesizeStage(service),
        projection=projection,
    )
    return ResearchServices(
        store=store,
        projection=projection,
        limiter=TaskCreationLimiter(
            counters, settings.task_create_limit, settings.task_create_window_seconds
        ),
        orchestrator=orchestrator,
        clarifier=Clarifier(service),
    )


def get_services(request: Request) -> ResearchServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services


def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    """Principal id supplied by the authentication layer in front of the API."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError as PydanticValidationError

from resonance.api.deps import ResearchServices, get_owner_id, get_services
from resonance.errors import ValidationError
from resonance.models.schemas import (
    ClarifiedScope,
    ClarifyContinueRequest,
    ClarifyQuestions,
    ClarifyRequest,
    CreateTaskRequest,
    CreateTaskResponse,
    TaskListResponse,
    TaskStatusResponse,
    TaskSummary,
)
from resonance.models.task import ChatMessage, ResearchTask
from resonance.services.logger import log_event

router = APIRouter(prefix="/api/research", tags=["research"])


def _parse_create_request(payload: Any) -> CreateTaskRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return CreateTaskRequest.model_validate(payload)
    except PydanticValidationError as exc:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError("Invalid research task request", details=details)


@router.post("", response_model=CreateTaskResponse, response_model_by_alias=True)
async def create_task(
    payload: Any = Body(default=None),
    owner_id: str = Depends(get_owner_id),
    services: ResearchServices = Depends(get_services),
):
    """Create a research task. Progress is driven by polling its status."""
    request = _parse_create_request(payload)
    await services.limiter.check(owner_id)

    task = await services.store.create(
        ResearchTask(
            owner_id=owner_id,
            title=request.title,
            description=request.description,
            clarified_scope=request.clarified_scope,
            parameters=request.parameters,
            messages=[ChatMessage(role=m.role, content=m.content) for m in request.messages],
        )
    )
    await services.projection.create_for_task(task)
    log_event("task_created", f"Research task {task.id} created", owner_id=owner_id)
    return CreateTaskResponse(task_id=task.id)


@router.get("", response_model=TaskListResponse, response_model_by_alias=True)
async def list_tasks(
    owner_id: str = Depends(get_owner_id),
    services: ResearchServices = Depends(get_services),
):
    tasks = await services.store.list_for_owner(owner_id)
    return TaskListResponse(tasks=[TaskSummary.from_task(t) for t in tasks])


@router.post("/clarify", response_model=ClarifyQuestions, response_model_by_alias=True)
async def clarify(
    request: ClarifyRequest,
    owner_id: str = Depends(get_owner_id),
    services: ResearchServices = Depends(get_services),
):
    return await services.clarifier.ask(request.title, request.description)


@router.post("/clarify/continue", response_model=ClarifiedScope, response_model_by_alias=True)
async def clarify_continue(
    request: ClarifyContinueRequest,
    owner_id: str = Depends(get_owner_id),
    services: ResearchServices = Depends(get_services),
):
    return await services.clarifier.finalize(request.title, request.description, request.messages)


@router.get("/{task_id}/status", response_model=TaskStatusResponse, response_model_by_alias=True)
async def task_status(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    services: ResearchServices = Depends(get_services),
):
    """Advance the task by at most one stage, then report where it stands."""
    task = await services.orchestrator.advance(task_id, owner_id)
    return TaskStatusResponse.from_task(task)


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    services: ResearchServices = Depends(get_services),
):
    task = await services.store.get(task_id, owner_id)
    return task.snapshot()

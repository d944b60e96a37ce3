"""Tests for the in-memory task store and its write guard."""
import json

import pytest

from conftest import analysis_json, make_task, plan_json
from resonance.errors import ConcurrencyConflict, TaskNotFoundError
from resonance.models.task import BatchAnalysis, ResearchPlan, TaskStatus
from resonance.services.task_store import InMemoryTaskStore


def _plan(ids=None):
    return ResearchPlan.model_validate(json.loads(plan_json(ids)))


def _analysis(sid):
    return BatchAnalysis.model_validate(json.loads(analysis_json(sid)))


@pytest.mark.asyncio
async def test_update_bumps_version_and_timestamp():
    store = InMemoryTaskStore()
    task = await store.create(make_task())

    updated = await store.update(task.id, 1, {"plan": _plan()})
    assert updated.version == 2
    assert updated.updated_at >= task.updated_at
    assert updated.plan.sub_question_ids == ["sq1", "sq2", "sq3"]


@pytest.mark.asyncio
async def test_stale_version_is_rejected():
    store = InMemoryTaskStore()
    task = await store.create(make_task())
    await store.update(task.id, 1, {"progress": 0})

    with pytest.raises(ConcurrencyConflict) as excinfo:
        await store.update(task.id, 1, {"plan": _plan()})
    assert excinfo.value.actual_version == 2
    assert (await store.get(task.id)).plan is None


@pytest.mark.asyncio
async def test_present_plan_is_never_overwritten():
    store = InMemoryTaskStore()
    task = await store.create(make_task())
    task = await store.update(task.id, 1, {"plan": _plan()})

    with pytest.raises(ConcurrencyConflict):
        await store.update(task.id, task.version, {"plan": _plan(["x"])})


@pytest.mark.asyncio
async def test_existing_analysis_is_never_replaced():
    store = InMemoryTaskStore()
    task = await store.create(make_task())
    task = await store.update(task.id, 1, {"plan": _plan()})
    task = await store.update(task.id, task.version, {"batch_analyses": {"sq1": _analysis("sq1")}})

    replacement = _analysis("sq1").model_copy(update={"insight_summary": "different"})
    with pytest.raises(ConcurrencyConflict):
        await store.update(
            task.id, task.version, {"batch_analyses": {"sq1": replacement, "sq2": _analysis("sq2")}}
        )


@pytest.mark.asyncio
async def test_terminal_task_is_immutable():
    store = InMemoryTaskStore()
    task = await store.create(make_task())
    task = await store.update(
        task.id, 1, {"status": TaskStatus.FAILED, "error_message": "boom"}
    )

    with pytest.raises(ConcurrencyConflict):
        await store.update(task.id, task.version, {"status": TaskStatus.COMPLETED})


@pytest.mark.asyncio
async def test_immutable_inputs_cannot_be_updated():
    store = InMemoryTaskStore()
    task = await store.create(make_task())
    with pytest.raises(ValueError):
        await store.update(task.id, 1, {"clarified_scope": "changed"})


@pytest.mark.asyncio
async def test_returned_tasks_are_copies():
    store = InMemoryTaskStore()
    task = await store.create(make_task())

    fetched = await store.get(task.id)
    fetched.parameters["platforms"].append("TikTok")
    assert "TikTok" not in (await store.get(task.id)).parameters["platforms"]


@pytest.mark.asyncio
async def test_owner_scoping_and_listing():
    store = InMemoryTaskStore()
    mine = await store.create(make_task(owner_id="a"))
    await store.create(make_task(owner_id="b"))
    done = await store.create(make_task(owner_id="a"))
    await store.update(done.id, 1, {"status": TaskStatus.FAILED, "error_message": "x"})

    with pytest.raises(TaskNotFoundError):
        await store.get(mine.id, owner_id="b")
    assert {t.id for t in await store.list_for_owner("a")} == {mine.id, done.id}
    assert done.id not in {t.id for t in await store.list_running()}

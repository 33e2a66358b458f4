"""
Tests for ConferenceRoom
"""
import re

import pytest
import structlog

from conftest import FakeGenerator
from aurakai.domain.context.context_store import ContextStore
from aurakai.domain.models.agent_state import AgentDescriptor, AgentResponse
from aurakai.domain.orchestration.conference.conference_room import (
    TASK_COMPLETED, TASK_FAILED, ConferenceRoom
)
from aurakai.domain.orchestration.core.orchestrator import Orchestrator
from aurakai.domain.orchestration.subagent.agent import Agent


def make_agent(name, content=None, confidence=0.5, error=None):
    async def handler(request):
        if error is not None:
            raise error
        return AgentResponse(agent_name=name, content=content or f"{name} on {request.query}", confidence=confidence)

    return Agent(AgentDescriptor(name=name), handler)


@pytest.fixture
def room():
    return ConferenceRoom("standup", Orchestrator(ContextStore(), FakeGenerator()))


@pytest.mark.asyncio
async def test_empty_queue_returns_none(room):
    assert await room.process_next_async_task() is None
    assert room.error_log == []


@pytest.mark.asyncio
async def test_tasks_run_in_fifo_order(room):
    order = []

    async def async_task():
        order.append("second")
        return 2

    room.queue_async_task("one", lambda: order.append("first") or 1)
    room.queue_async_task("two", async_task)

    assert await room.process_next_async_task() == 1
    assert await room.process_next_async_task() == 2
    assert order == ["first", "second"]
    assert room.queue_size == 0


@pytest.mark.asyncio
async def test_failing_task_is_isolated(room):
    events = []
    room.register_webhook(lambda event, payload: events.append((event, payload)))

    def boom():
        raise RuntimeError("disk full")

    room.queue_async_task("bad", boom)
    room.queue_async_task("good", lambda: "done")

    assert await room.process_next_async_task() is None
    assert await room.process_next_async_task() == "done"

    assert len(room.error_log) == 1
    assert re.match(r"^\[\d+\] Async task failed: disk full$", room.error_log[0])
    assert events == [(TASK_FAILED, "disk full"), (TASK_COMPLETED, "done")]


@pytest.mark.asyncio
async def test_raising_webhook_does_not_stop_others(room):
    seen = []

    def broken(event, payload):
        raise ValueError("listener bug")

    room.register_webhook(broken)
    room.register_webhook(lambda event, payload: seen.append(payload))
    room.queue_async_task("t", lambda: 42)

    assert await room.process_next_async_task() == 42
    assert seen == [42]


@pytest.mark.asyncio
async def test_tasks_run_with_room_bound_to_log_context(room):
    room.queue_async_task("ctx", lambda: structlog.contextvars.get_contextvars().get("room"))

    assert await room.process_next_async_task() == "standup"
    assert "room" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_drain_processes_everything(room):
    for i in range(3):
        room.queue_async_task(f"t{i}", lambda i=i: i)

    assert await room.drain_async_tasks() == 3
    assert await room.drain_async_tasks() == 0


def test_clear_async_queue_drops_pending(room):
    room.queue_async_task("t", lambda: None)

    room.clear_async_queue()

    assert room.queue_size == 0


def test_join_is_idempotent_and_registers(room):
    agent = make_agent("alpha")

    room.join(agent)
    room.join(agent)

    assert [a.name for a in room.agents] == ["alpha"]
    assert "alpha" in room.orchestrator.registry

    room.leave(agent)
    room.leave(agent)
    assert room.agents == []


@pytest.mark.asyncio
async def test_conversation_round_records_history_and_failures(room):
    room.join(make_agent("alpha", "sounds good"))
    room.join(make_agent("beta", error=RuntimeError("offline")))
    room.broadcast_context({"topic": "release"})

    responses = await room.orchestrate_conversation("ship it?")

    assert [r.agent_name for r in responses] == ["alpha"]
    assert room.history == ["alpha: sounds good"]
    assert room.request_count == 1
    assert re.match(r"^\[\d+\] Agent beta did not respond$", room.error_log[0])


def test_distribute_context_reaches_agents(room):
    agent = make_agent("alpha")
    room.join(agent)
    room.broadcast_context({"topic": "release"})

    room.distribute_context()

    assert agent.memory.working_memory["topic"] == "release"
    assert room.context == {"topic": "release"}


def test_consensus_delegates_to_orchestrator(room):
    maps = [
        {"alpha": AgentResponse(agent_name="alpha", content="a", confidence=0.4)},
        {"alpha": AgentResponse(agent_name="alpha", content="b", confidence=0.9)},
    ]

    assert room.aggregate_consensus(maps)["alpha"].content == "b"


def test_metadata_and_custom_properties(room):
    room.join(make_agent("alpha"))
    room.queue_async_task("t", lambda: None)
    room.log_error("something odd")
    room.set_custom_property("owner", "ops")

    metadata = room.metadata()

    assert metadata["name"] == "standup"
    assert metadata["agent_count"] == 1
    assert metadata["async_queue_size"] == 1
    assert metadata["error_count"] == 1
    assert room.get_custom_property("owner") == "ops"
    assert room.get_custom_property("missing") is None
    assert room.custom_properties == {"owner": "ops"}

    room.clear_error_log()
    assert room.metadata()["error_count"] == 0


def test_history_persists_and_loads(room):
    saved = []
    room.add_to_history("alpha: hi")
    room.add_to_history("beta: hello")

    room.persist_history(saved.extend)
    room.clear_history()
    assert room.history == []

    room.load_history(lambda: saved)
    assert room.history == ["alpha: hi", "beta: hello"]
    assert room.snapshot()["history"] == ["alpha: hi", "beta: hello"]

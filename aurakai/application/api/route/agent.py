from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from datetime import datetime

from aurakai.application.container import ServiceContainer
from aurakai.domain.models.agent_state import AgentResponse
from aurakai.domain.orchestration.conference.conference_room import ConferenceRoom
from aurakai.infrastructure.observability.logging import metrics

router = APIRouter(prefix="/api/v1")


class AgentRequestBody(BaseModel):
    query: str = Field(min_length=1)
    conversation_context: Optional[str] = None


class AgentRequestResult(BaseModel):
    response: str
    status: str
    last_error: Optional[str] = None


class ConversationInput(BaseModel):
    input: str = Field(min_length=1)


class GestureResult(BaseModel):
    accepted: bool
    companion: Dict[str, Any]


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_existing_room(room: str, container: ServiceContainer = Depends(get_container)) -> ConferenceRoom:
    existing = container.get_room(room, create=False)
    if existing is None:
        raise HTTPException(status_code=404, detail=f"Unknown room: {room}")
    return existing


@router.post("/agent/request", response_model=AgentRequestResult)
async def agent_request(body: AgentRequestBody, container: ServiceContainer = Depends(get_container)):
    orchestrator = container.orchestrator
    response = await orchestrator.process_request(body.query, conversation_context=body.conversation_context)
    return AgentRequestResult(
        response=response,
        status=orchestrator.status.value,
        last_error=orchestrator.last_error
    )


@router.get("/context")
async def get_context(container: ServiceContainer = Depends(get_container)):
    record = container.context_store.get()
    return {
        "record": record.model_dump(mode="json"),
        "summary": container.context_store.render_summary()
    }


@router.delete("/context")
async def clear_context(container: ServiceContainer = Depends(get_container)):
    record = container.context_store.clear()
    return {"record": record.model_dump(mode="json")}


@router.post("/conversation/listen")
async def listen(container: ServiceContainer = Depends(get_container)):
    """Run one conversation; rejected while another run is in progress"""
    started = await container.pipeline.listen_again()
    return {"started": started, "state": container.pipeline.state.model_dump(mode="json")}


@router.get("/conversation")
async def conversation_state(container: ServiceContainer = Depends(get_container)):
    pipeline = container.pipeline
    return {
        "state": pipeline.state.model_dump(mode="json"),
        "history": [entry.model_dump(mode="json") for entry in pipeline.history.entries()],
        "preferences": pipeline.preferences.top()
    }


@router.post("/companion/tap", response_model=GestureResult)
async def companion_tap(container: ServiceContainer = Depends(get_container)):
    accepted = container.companion.tap()
    return GestureResult(accepted=accepted, companion=container.companion.get_info())


@router.post("/companion/long-press", response_model=GestureResult)
async def companion_long_press(container: ServiceContainer = Depends(get_container)):
    accepted = container.companion.long_press()
    return GestureResult(accepted=accepted, companion=container.companion.get_info())


@router.get("/companion")
async def companion_state(container: ServiceContainer = Depends(get_container)):
    return container.companion.get_info()


@router.post("/conference/{room}/agents/{agent}")
async def join_room(room: str, agent: str, container: ServiceContainer = Depends(get_container)):
    registered = container.registry.get(agent)
    if registered is None:
        raise HTTPException(status_code=404, detail=f"Unknown agent: {agent}")

    conference = container.get_room(room)
    conference.join(registered)
    return conference.metadata()


@router.delete("/conference/{room}/agents/{agent}")
async def leave_room(
    agent: str,
    conference: ConferenceRoom = Depends(get_existing_room),
    container: ServiceContainer = Depends(get_container)
):
    registered = container.registry.get(agent)
    if registered is None:
        raise HTTPException(status_code=404, detail=f"Unknown agent: {agent}")
    conference.leave(registered)
    return conference.metadata()


@router.put("/conference/{room}/context")
async def broadcast_context(context: Dict[str, Any], conference: ConferenceRoom = Depends(get_existing_room)):
    conference.broadcast_context(context)
    conference.distribute_context()
    return {"context": conference.context}


@router.post("/conference/{room}/conversation", response_model=List[AgentResponse])
async def room_conversation(body: ConversationInput, conference: ConferenceRoom = Depends(get_existing_room)):
    return await conference.orchestrate_conversation(body.input)


@router.post("/conference/{room}/tasks/next")
async def process_next_task(conference: ConferenceRoom = Depends(get_existing_room)):
    result = await conference.process_next_async_task()
    return {"result": result, "remaining": conference.queue_size}


@router.get("/conference/{room}")
async def room_details(conference: ConferenceRoom = Depends(get_existing_room)):
    return {
        **conference.snapshot(),
        "metadata": conference.metadata(),
        "errors": conference.error_log
    }


@router.get("/health")
async def health_check(request: Request, container: ServiceContainer = Depends(get_container)):
    """Health check endpoint"""
    connection_manager = request.app.state.connection_manager
    return {
        "status": "healthy",
        "orchestrator": container.orchestrator.status.value,
        "pipeline": container.pipeline.state.status.value,
        "companion": container.companion.state.value,
        "rooms": len(container.rooms),
        "active_connections": len(connection_manager.active_connections),
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/metrics")
async def get_metrics():
    return metrics.get_metrics_summary()

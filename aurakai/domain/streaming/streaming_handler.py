from typing import Any, Dict, Optional, Set
import asyncio
import structlog

from aurakai.application.websocket.connection_manager import ConnectionManager
from aurakai.application.websocket.schema.events import (
    BaseEvent, CompanionStateEvent, MarkdownEvent, PipelineStageEvent, TaskEvent
)
from aurakai.domain.companion.companion_state_machine import CompanionStateMachine
from aurakai.domain.models.agent_state import CompanionState
from aurakai.domain.models.context import EmotionLabel
from aurakai.domain.orchestration.conference.conference_room import ConferenceRoom
from aurakai.domain.pipeline.conversation_pipeline import ConversationPipeline

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Streams companion, pipeline and task events to WebSocket clients.

    Domain callbacks are synchronous; each one schedules a broadcast on the
    running loop and returns immediately.
    """

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager
        self._pending: Set[asyncio.Task] = set()
        self._rooms: Set[str] = set()

    def attach_companion(self, companion: CompanionStateMachine):
        companion.add_listener(self.on_companion_change)

    def attach_pipeline(self, pipeline: ConversationPipeline):
        pipeline.add_stage_listener(self.on_stage)

    def attach_room(self, room: ConferenceRoom):
        """Forward a room's task outcomes; attaching twice has no effect"""
        if room.name in self._rooms:
            return
        self._rooms.add(room.name)
        room.register_webhook(lambda event, payload: self.on_task_event(room.name, event, payload))

    def on_companion_change(self, state: CompanionState, emotion: EmotionLabel):
        self._schedule(CompanionStateEvent(state=state.value, emotion=emotion.value))

    def on_stage(self, stage: str, payload: Dict[str, Any]):
        self._schedule(PipelineStageEvent(stage=stage, payload=payload))
        if stage == "respond" and payload.get("response"):
            self._schedule(MarkdownEvent(payload=payload["response"]))

    def on_task_event(self, room: str, event: str, payload: Any):
        self._schedule(TaskEvent(room=room, outcome=event, payload=_jsonable(payload)))

    async def flush(self):
        """Wait for broadcasts already scheduled"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, event: BaseEvent):
        if not self.connection_manager.active_connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; event not streamed", event_type=event.type.value)
            return

        task = loop.create_task(self.connection_manager.broadcast(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def _jsonable(payload: Any) -> Optional[Any]:
    if payload is None or isinstance(payload, (str, int, float, bool, list, dict)):
        return payload
    return str(payload)

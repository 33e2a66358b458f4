from typing import Dict, Any, Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    """WebSocket event types"""
    MARKDOWN = "markdown"
    COMPANION_STATE = "companion_state"
    PIPELINE_STAGE = "pipeline_stage"
    TASK = "task"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"
    GESTURE = "gesture"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class MarkdownEvent(BaseEvent):
    """Markdown content event for agent replies"""
    type: Literal[EventType.MARKDOWN] = EventType.MARKDOWN
    payload: str


class CompanionStateEvent(BaseEvent):
    """Companion state or emotion changed"""
    type: Literal[EventType.COMPANION_STATE] = EventType.COMPANION_STATE
    state: str
    emotion: str


class PipelineStageEvent(BaseEvent):
    """A conversation pipeline stage finished"""
    type: Literal[EventType.PIPELINE_STAGE] = EventType.PIPELINE_STAGE
    stage: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class TaskEvent(BaseEvent):
    """Outcome of a conference room task"""
    type: Literal[EventType.TASK] = EventType.TASK
    room: str
    outcome: Literal["task_completed", "task_failed"]
    payload: Any = None


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected", "reconnecting"]


class UserMessage(BaseEvent):
    """User message event"""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str
    metadata: Optional[Dict[str, Any]] = None


class GestureEvent(BaseEvent):
    """Gesture on the companion from the client"""
    type: Literal[EventType.GESTURE] = EventType.GESTURE
    gesture: Literal["tap", "long_press"]

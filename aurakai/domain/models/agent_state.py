from typing import Dict, Any, List, Optional, FrozenSet, Mapping, Tuple
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum

from .context import EmotionLabel


class AgentType(str, Enum):
    """Closed set of agent variants"""
    PRIMARY = "primary"
    COMPANION = "companion"
    VISION = "vision"
    ORCHESTRATOR = "orchestrator"
    CUSTOM = "custom"


class OrchestratorStatus(str, Enum):
    """Orchestrator execution status"""
    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"


class CompanionState(str, Enum):
    """Visible state of the companion agent"""
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"
    THINKING = "thinking"
    ALERT = "alert"


class ConversationStatus(str, Enum):
    """Conversation pipeline status"""
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class LearningEvent(BaseModel):
    """Something an agent learned, kept for later prompts"""
    model_config = ConfigDict(frozen=True)

    description: str
    source: Optional[str] = None
    recorded_at: datetime = Field(default_factory=datetime.utcnow)


class AgentDescriptor(BaseModel):
    """Identity and configuration of an agent, fixed for its lifetime"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Unique agent identity")
    type: AgentType = Field(default=AgentType.CUSTOM)
    capabilities: FrozenSet[str] = Field(default_factory=frozenset)
    guidelines: Mapping[str, str] = Field(default_factory=dict)
    memory: Mapping[str, Any] = Field(default_factory=dict, description="Seed memory")
    learning_history: Tuple[LearningEvent, ...] = Field(default_factory=tuple)


class AgentMemory(BaseModel):
    """Agent memory storage"""
    short_term: List[Dict[str, Any]] = Field(default_factory=list, description="Recent interactions")
    working_memory: Dict[str, Any] = Field(default_factory=dict, description="Current task context")


class AgentRequest(BaseModel):
    """Request handed to an agent"""
    query: str
    context: Dict[str, Any] = Field(default_factory=dict, description="Shared session context")
    requested_at: datetime = Field(default_factory=datetime.utcnow)


class AgentResponse(BaseModel):
    """Response produced by an agent"""
    agent_name: str
    content: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# Agent identity -> chosen response
ConsensusResult = Dict[str, AgentResponse]


class ConversationState(BaseModel):
    """Observable state of the conversation pipeline"""
    model_config = ConfigDict(frozen=True)

    status: ConversationStatus = ConversationStatus.IDLE
    response: Optional[str] = None
    error: Optional[str] = None
    transcript: Optional[str] = None
    emotion: Optional[EmotionLabel] = None
    forwarded: bool = False

    @classmethod
    def idle(cls) -> "ConversationState":
        return cls()

    @property
    def is_busy(self) -> bool:
        return self.status in (ConversationStatus.LISTENING, ConversationStatus.PROCESSING)

from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime
import asyncio
import json

from aurakai.domain.collaborators import GenerationBackend
from aurakai.domain.models.agent_state import (
    AgentDescriptor, AgentMemory, AgentRequest, AgentResponse, AgentType, LearningEvent
)

AgentHandler = Callable[[AgentRequest], Awaitable[AgentResponse]]


class Agent:
    """An agent variant: a fixed descriptor plus the handler answering its requests.

    Variants differ by ``descriptor.type`` and handler, not by subclassing.
    """

    def __init__(self, descriptor: AgentDescriptor, handler: AgentHandler):
        self.descriptor = descriptor
        self.handler = handler
        self.memory = AgentMemory(working_memory=dict(descriptor.memory))
        self.learning_events: List[LearningEvent] = list(descriptor.learning_history)
        self.created_at = datetime.utcnow()
        self.last_active = datetime.utcnow()

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def type(self) -> AgentType:
        return self.descriptor.type

    async def handle(self, request: AgentRequest) -> AgentResponse:
        """Answer a request and remember the exchange"""

        self.update_activity()
        response = await self.handler(request)
        self.memory.short_term.append({
            "timestamp": datetime.utcnow(),
            "query": request.query,
            "response": response.content
        })
        # Keep only last 100 items
        if len(self.memory.short_term) > 100:
            self.memory.short_term = self.memory.short_term[-100:]
        return response

    def remember(self, data: Dict[str, Any]) -> None:
        """Merge data into working memory"""
        self.memory.working_memory.update(data)

    def learn(self, description: str, source: Optional[str] = None) -> LearningEvent:
        event = LearningEvent(description=description, source=source)
        self.learning_events.append(event)
        return event

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_active = datetime.utcnow()

    def get_info(self) -> Dict[str, Any]:
        """Get agent information"""
        return {
            "name": self.name,
            "type": self.type.value,
            "capabilities": sorted(self.descriptor.capabilities),
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat(),
            "learning_events": len(self.learning_events)
        }

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r}, type={self.type.value})"


class GenerativeHandler:
    """Handler that answers through the generation backend in a given persona"""

    def __init__(
        self,
        generator: GenerationBackend,
        agent_name: str,
        persona: str,
        confidence: float = 0.8,
        timeout: float = 30.0
    ):
        self.generator = generator
        self.agent_name = agent_name
        self.persona = persona
        self.confidence = confidence
        self.timeout = timeout

    def build_prompt(self, request: AgentRequest) -> str:
        parts = [self.persona]
        if request.context:
            parts.append("Shared context:\n" + json.dumps(request.context, default=str, sort_keys=True))
        parts.append(f"Request: {request.query}")
        return "\n\n".join(parts)

    async def __call__(self, request: AgentRequest) -> AgentResponse:
        content = await asyncio.wait_for(
            self.generator.generate(self.build_prompt(request)),
            timeout=self.timeout
        )
        return AgentResponse(
            agent_name=self.agent_name,
            content=content,
            confidence=self.confidence
        )

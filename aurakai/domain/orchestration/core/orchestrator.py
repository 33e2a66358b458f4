from typing import Any, Dict, Iterable, List, Optional, Sequence
import asyncio
import time
import structlog

from aurakai.domain.collaborators import GenerationBackend, SecuritySource, VisionProvider
from aurakai.domain.context.context_store import ContextStore
from aurakai.domain.emotion.text_emotion import detect_text_emotion
from aurakai.domain.models.agent_state import (
    AgentRequest, AgentResponse, ConsensusResult, OrchestratorStatus
)
from aurakai.domain.models.context import ContextRecord, SecuritySnapshot, VisionSnapshot
from aurakai.domain.orchestration.core.agent_registry import AgentRegistry
from aurakai.domain.orchestration.subagent.agent import Agent
from aurakai.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

APOLOGY_RESPONSE = "I apologize, but I encountered an error while processing your request."


def aggregate_responses(response_maps: Iterable[Dict[str, AgentResponse]]) -> ConsensusResult:
    """Merge per-agent response maps; highest confidence wins, ties keep the earliest seen"""

    consensus: ConsensusResult = {}
    for responses in response_maps:
        for agent_name, response in responses.items():
            current = consensus.get(agent_name)
            if current is None or response.confidence > current.confidence:
                consensus[agent_name] = response
    return consensus


class Orchestrator:
    """Assembles prompts from shared context and drives the generation backend"""

    def __init__(
        self,
        context_store: ContextStore,
        generator: GenerationBackend,
        registry: Optional[AgentRegistry] = None,
        vision: Optional[VisionProvider] = None,
        security: Optional[SecuritySource] = None,
        primary_agent_name: str = "Aura",
        companion_name: str = "Kai",
        timeout: float = 30.0
    ):
        self.context_store = context_store
        self.generator = generator
        self.registry = registry or AgentRegistry()
        self.vision = vision
        self.security = security
        self.primary_agent_name = primary_agent_name
        self.companion_name = companion_name
        self.timeout = timeout
        self.status = OrchestratorStatus.IDLE
        self.last_error: Optional[str] = None

    async def process_request(self, text: str, conversation_context: Optional[str] = None) -> str:
        """Answer a request with full context awareness; never raises"""

        self._set_status(OrchestratorStatus.PROCESSING)
        started = time.perf_counter()
        try:
            record = self.context_store.get()
            visual = self._latest_vision()
            snapshot = self._latest_security()

            prompt = self.build_prompt(
                text,
                record,
                visual=visual,
                security=snapshot or record.security_snapshot,
                conversation_context=conversation_context
            )

            response = await asyncio.wait_for(self.generator.generate(prompt), timeout=self.timeout)
            if not response or not response.strip():
                raise ValueError("Generation backend returned an empty response")

            self.context_store.update(
                user_text=text,
                primary_agent_text=response,
                emotion=detect_text_emotion(response),
                auxiliary_text=visual.summary() if visual else None,
                security_snapshot=snapshot
            )
            metrics.increment_counter("orchestrator.success")
            self.last_error = None
            return response

        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            self._set_status(OrchestratorStatus.ERROR)
            metrics.increment_counter("orchestrator.failure")
            logger.error("Error processing request", error=self.last_error)
            return APOLOGY_RESPONSE

        finally:
            metrics.record_latency("orchestrator.process_request", (time.perf_counter() - started) * 1000)
            self._set_status(OrchestratorStatus.IDLE)

    def build_prompt(
        self,
        request: str,
        record: ContextRecord,
        visual: Optional[VisionSnapshot] = None,
        security: Optional[SecuritySnapshot] = None,
        conversation_context: Optional[str] = None
    ) -> str:
        """Build an enhanced prompt with all available context"""

        lines = [
            f"You are the orchestrator uniting {self.primary_agent_name} and {self.companion_name}.",
            "Current Context:"
        ]

        if visual is not None:
            lines.append("Visual Context:")
            lines.append(visual.summary())

        if record.user_text.strip():
            lines.append(f"User context: {record.user_text}")
        if record.primary_agent_text.strip():
            lines.append(f"{self.primary_agent_name}'s understanding: {record.primary_agent_text}")
        if record.companion_agent_text.strip():
            lines.append(f"{self.companion_name}'s perspective: {record.companion_agent_text}")
        if record.auxiliary_text.strip() and visual is None:
            lines.append(f"Auxiliary context: {record.auxiliary_text}")

        if security is not None:
            lines.append("Security Status:")
            lines.append(f"RAM: {security.ram_usage:.0f}%")
            lines.append(f"CPU: {security.cpu_usage:.0f}%")
            lines.append(f"Battery: {security.battery_temp:.1f}°C")
            lines.append(f"Recent Errors: {security.recent_errors}")

        lines.append(f"Current Emotion: {record.emotion.value}")

        if conversation_context:
            lines.append("")
            lines.append(conversation_context)

        lines.append("")
        lines.append(f"User Request: {request}")
        lines.append("")
        lines.append(
            f"Please respond with both {self.primary_agent_name}'s understanding "
            f"and {self.companion_name}'s security considerations."
        )
        return "\n".join(lines)

    async def participate_with_agents(
        self,
        context: Dict[str, Any],
        agents: Sequence[Agent],
        user_input: str
    ) -> Dict[str, AgentResponse]:
        """Fan a request out to agents concurrently; failing agents are left out"""

        request = AgentRequest(query=user_input, context=dict(context))
        names = [agent.name for agent in agents]
        results = await asyncio.gather(
            *(self.registry.dispatch(name, request) for name in names),
            return_exceptions=True
        )

        responses: Dict[str, AgentResponse] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                metrics.increment_counter("agent.failure", tags={"agent": name})
                logger.error("Agent failed to respond", agent_name=name, error=str(result) or type(result).__name__)
                continue
            responses[name] = result
            agent_logger.log_agent_event("responded", name, {"confidence": result.confidence})

        return responses

    def aggregate_responses(self, response_maps: List[Dict[str, AgentResponse]]) -> ConsensusResult:
        return aggregate_responses(response_maps)

    def share_context_with_agents(self, context: Dict[str, Any], agents: Iterable[Agent]) -> None:
        """Copy a shared context into each agent's working memory"""
        for agent in agents:
            agent.remember(dict(context))
            agent_logger.log_agent_event("context_shared", agent.name, {"keys": sorted(context)})

    def handle_security_alert(self, description: str, snapshot: Optional[SecuritySnapshot] = None) -> ContextRecord:
        """Record a security alert raised by the companion"""
        logger.warning("Security alert", description=description)
        return self.context_store.update(
            companion_agent_text=description,
            security_snapshot=snapshot
        )

    def _latest_vision(self) -> Optional[VisionSnapshot]:
        if self.vision is None:
            return None
        try:
            return self.vision.latest()
        except Exception as e:
            logger.warning("Vision context unavailable", error=str(e))
            return None

    def _latest_security(self) -> Optional[SecuritySnapshot]:
        if self.security is None:
            return None
        try:
            return self.security.snapshot()
        except Exception as e:
            logger.warning("Security snapshot unavailable", error=str(e))
            return None

    def _set_status(self, status: OrchestratorStatus) -> None:
        if self.status != status:
            agent_logger.log_state_transition("orchestrator", self.status.value, status.value)
            self.status = status

"""
Composition root: builds every shared service once and wires them together.
"""

from typing import Callable, Dict, List, Optional
import random
import structlog

from aurakai.domain.collaborators import (
    AudioCapture, DurableStore, EmotionModel, GenerationBackend, SecuritySource,
    SilentAudioCapture, Speaker, Transcriber, VisionProvider
)
from aurakai.domain.companion.companion_state_machine import CompanionStateMachine, TimedSpeaker
from aurakai.domain.context.context_ranker import CompanionRouter
from aurakai.domain.context.context_store import ContextStore
from aurakai.domain.context.memory.conversation_history import ConversationHistory
from aurakai.domain.context.memory.preference_model import UserPreferenceModel
from aurakai.domain.emotion.emotion_classifier import EmotionClassifier
from aurakai.domain.models.agent_state import AgentDescriptor, AgentType
from aurakai.domain.orchestration.conference.conference_room import ConferenceRoom
from aurakai.domain.orchestration.core.agent_registry import AgentRegistry
from aurakai.domain.orchestration.core.orchestrator import Orchestrator
from aurakai.domain.orchestration.subagent.agent import Agent, GenerativeHandler
from aurakai.domain.pipeline.conversation_pipeline import ConversationPipeline
from aurakai.infrastructure.config.settings import Settings
from aurakai.infrastructure.inference.openai_compat import OpenAICompatGenerator
from aurakai.infrastructure.monitoring.security_monitor import SecurityMonitor
from aurakai.infrastructure.persistence.durable_store import InMemoryDurableStore, JsonFileDurableStore
from aurakai.infrastructure.scheduling.periodic_loop import PeriodicLoop
from aurakai.infrastructure.scheduling.scheduler import AsyncioScheduler, Scheduler

logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Holds the shared services; rooms are created on first use"""

    def __init__(
        self,
        settings: Settings,
        context_store: ContextStore,
        registry: AgentRegistry,
        orchestrator: Orchestrator,
        companion: CompanionStateMachine,
        pipeline: ConversationPipeline,
        security_monitor: Optional[SecurityMonitor] = None
    ):
        self.settings = settings
        self.context_store = context_store
        self.registry = registry
        self.orchestrator = orchestrator
        self.companion = companion
        self.pipeline = pipeline
        self.security_monitor = security_monitor
        self.rooms: Dict[str, ConferenceRoom] = {}
        self.loops: List[PeriodicLoop] = []
        self._room_listeners: List[Callable[[ConferenceRoom], None]] = []

        if security_monitor is not None:
            self.loops.append(
                PeriodicLoop("security_monitor", settings.monitor_interval_s, security_monitor.tick)
            )
        self.loops.append(
            PeriodicLoop("task_drain", settings.task_drain_interval_s, self.drain_rooms)
        )

    def get_room(self, name: str, create: bool = True) -> Optional[ConferenceRoom]:
        room = self.rooms.get(name)
        if room is None and create:
            room = ConferenceRoom(name, self.orchestrator)
            self.rooms[name] = room
            logger.info("Conference room created", room=name)
            for listener in self._room_listeners:
                listener(room)
        return room

    def add_room_listener(self, listener: Callable[[ConferenceRoom], None]) -> None:
        """Called with every room created from now on"""
        self._room_listeners.append(listener)

    async def drain_rooms(self) -> None:
        for room in list(self.rooms.values()):
            if room.queue_size:
                await room.drain_async_tasks()

    def add_loop(self, loop: PeriodicLoop) -> None:
        self.loops.append(loop)

    async def start(self) -> None:
        """Restore persisted context and start the background loops"""
        await self.context_store.load()
        for loop in self.loops:
            loop.start()

    async def stop(self) -> None:
        for loop in self.loops:
            loop.stop()
        for loop in self.loops:
            await loop.join()
        self.companion.cancel_pending()
        await self.context_store.flush()


def default_agents(settings: Settings, generator: GenerationBackend) -> List[Agent]:
    """The primary and companion agents every deployment starts with"""

    primary = Agent(
        AgentDescriptor(
            name=settings.primary_agent_name,
            type=AgentType.PRIMARY,
            capabilities=frozenset({"conversation", "context", "creativity"}),
            guidelines={"tone": "warm", "focus": "understanding the user"}
        ),
        GenerativeHandler(
            generator,
            settings.primary_agent_name,
            f"You are {settings.primary_agent_name}, the user's primary assistant.",
            confidence=0.8,
            timeout=settings.collaborator_timeout_s
        )
    )
    companion = Agent(
        AgentDescriptor(
            name=settings.companion_name,
            type=AgentType.COMPANION,
            capabilities=frozenset({"security", "reminders", "monitoring"}),
            guidelines={"tone": "concise", "focus": "safety and follow-ups"}
        ),
        GenerativeHandler(
            generator,
            settings.companion_name,
            f"You are {settings.companion_name}, a companion watching over security and reminders.",
            confidence=0.7,
            timeout=settings.collaborator_timeout_s
        )
    )
    return [primary, companion]


def build_container(
    settings: Settings,
    generator: Optional[GenerationBackend] = None,
    capture: Optional[AudioCapture] = None,
    transcriber: Optional[Transcriber] = None,
    emotion_model: Optional[EmotionModel] = None,
    durable_store: Optional[DurableStore] = None,
    scheduler: Optional[Scheduler] = None,
    speaker: Optional[Speaker] = None,
    vision: Optional[VisionProvider] = None,
    security: Optional[SecuritySource] = None,
    rng: Optional[random.Random] = None
) -> ServiceContainer:
    """Construct the services; any collaborator not supplied gets its default"""

    if generator is None:
        generator = OpenAICompatGenerator(
            settings.generation_base_url,
            settings.generation_model,
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens,
            timeout=settings.collaborator_timeout_s
        )

    if durable_store is None:
        if settings.context_store_path:
            durable_store = JsonFileDurableStore(settings.context_store_path)
        else:
            durable_store = InMemoryDurableStore()

    security_monitor = None
    if security is None:
        security_monitor = SecurityMonitor()
        security = security_monitor

    scheduler = scheduler or AsyncioScheduler()
    speaker = speaker or TimedSpeaker(scheduler, settings.speech_words_per_second)

    context_store = ContextStore(durable_store, key=settings.context_key)

    registry = AgentRegistry()
    for agent in default_agents(settings, generator):
        registry.register(agent)

    orchestrator = Orchestrator(
        context_store,
        generator,
        registry=registry,
        vision=vision,
        security=security,
        primary_agent_name=settings.primary_agent_name,
        companion_name=settings.companion_name,
        timeout=settings.collaborator_timeout_s
    )

    companion = CompanionStateMachine(
        scheduler,
        speaker,
        primary_agent_name=settings.primary_agent_name,
        context_store=context_store,
        tap_alert_delay=settings.tap_alert_delay_s,
        listen_capture_delay=settings.listen_capture_delay_s,
        listen_processing_delay=settings.listen_processing_delay_s,
        receive_delay=settings.receive_delay_s,
        concern_alert_delay=settings.concern_alert_delay_s
    )

    pipeline = ConversationPipeline(
        capture or SilentAudioCapture(),
        EmotionClassifier(emotion_model, timeout=settings.collaborator_timeout_s),
        CompanionRouter(
            settings.companion_name,
            aliases=settings.companion_alias_list,
            threshold=settings.forward_threshold,
            history_window=settings.history_prompt_window
        ),
        orchestrator,
        history=ConversationHistory(settings.history_limit),
        preferences=UserPreferenceModel(),
        transcriber=transcriber,
        companion=companion,
        security=security,
        companion_name=settings.companion_name,
        capture_duration_ms=settings.capture_duration_ms,
        capture_timeout=settings.capture_timeout_s,
        collaborator_timeout=settings.collaborator_timeout_s,
        history_window=settings.history_prompt_window,
        rng=rng
    )
    # A tap on the companion starts a fresh listening run
    companion.on_activate = pipeline.listen_again

    return ServiceContainer(
        settings,
        context_store,
        registry,
        orchestrator,
        companion,
        pipeline,
        security_monitor=security_monitor
    )

"""
Visible state of the companion agent.

Every delayed step goes through an injectable scheduler and every utterance
through a Speaker, so the whole machine can be stepped on a virtual clock.
"""

from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set
import asyncio
import inspect
import structlog

from aurakai.domain.collaborators import Speaker
from aurakai.domain.context.context_store import ContextStore
from aurakai.domain.models.agent_state import CompanionState
from aurakai.domain.models.context import EmotionLabel
from aurakai.infrastructure.observability.logging import agent_logger
from aurakai.infrastructure.scheduling.scheduler import ScheduledCall, Scheduler

logger = structlog.get_logger(__name__)

TRANSITIONS: Dict[CompanionState, FrozenSet[CompanionState]] = {
    CompanionState.IDLE: frozenset({
        CompanionState.LISTENING, CompanionState.THINKING, CompanionState.SPEAKING, CompanionState.ALERT
    }),
    CompanionState.LISTENING: frozenset({
        CompanionState.IDLE, CompanionState.THINKING, CompanionState.ALERT
    }),
    CompanionState.THINKING: frozenset({
        CompanionState.IDLE, CompanionState.SPEAKING, CompanionState.ALERT
    }),
    CompanionState.SPEAKING: frozenset({
        CompanionState.IDLE, CompanionState.ALERT
    }),
    CompanionState.ALERT: frozenset({
        CompanionState.IDLE, CompanionState.SPEAKING, CompanionState.THINKING
    }),
}

LONG_PRESS_MESSAGE = "I've detected that as an advanced neural whisper command. Let me process that for you."
DEFAULT_CONCERN_MESSAGE = "Some security concerns were noted."

StateListener = Callable[[CompanionState, EmotionLabel], None]


class TimedSpeaker:
    """Speaker that finishes after a delay proportional to the number of words"""

    def __init__(self, scheduler: Scheduler, words_per_second: float = 3.0):
        self.scheduler = scheduler
        self.words_per_second = words_per_second
        self.spoken: List[str] = []

    def duration_for(self, text: str) -> float:
        return max(len(text.split()), 1) / self.words_per_second

    def speak(self, text: str, on_done: Callable[[], None]) -> None:
        self.spoken.append(text)
        self.scheduler.call_later(self.duration_for(text), on_done)


class CompanionStateMachine:
    """Companion agent states and the gestures that move between them"""

    def __init__(
        self,
        scheduler: Scheduler,
        speaker: Speaker,
        primary_agent_name: str = "Aura",
        on_activate: Optional[Callable[[], Any]] = None,
        context_store: Optional[ContextStore] = None,
        tap_alert_delay: float = 0.5,
        listen_capture_delay: float = 3.0,
        listen_processing_delay: float = 2.0,
        receive_delay: float = 1.0,
        concern_alert_delay: float = 1.5
    ):
        self.scheduler = scheduler
        self.speaker = speaker
        self.primary_agent_name = primary_agent_name
        self.on_activate = on_activate
        self.context_store = context_store

        self.tap_alert_delay = tap_alert_delay
        self.listen_capture_delay = listen_capture_delay
        self.listen_processing_delay = listen_processing_delay
        self.receive_delay = receive_delay
        self.concern_alert_delay = concern_alert_delay

        self.state = CompanionState.IDLE
        self.emotion = EmotionLabel.NEUTRAL
        self.last_message: Optional[str] = None

        self._listeners: List[StateListener] = []
        self._pending: List[ScheduledCall] = []
        self._generation = 0
        self._activation_tasks: Set[asyncio.Future] = set()

    # --- Guarded setters ---

    def can_transition(self, target: CompanionState) -> bool:
        return target in TRANSITIONS[self.state]

    def update_state(self, state: CompanionState, trigger: Optional[str] = None) -> bool:
        """Move to ``state`` if the transition table allows it"""

        if not self.can_transition(state):
            return False

        previous = self.state
        self.state = state
        agent_logger.log_state_transition("companion", previous.value, state.value, trigger=trigger)
        self._notify()
        return True

    def update_emotion(self, emotion: EmotionLabel) -> bool:
        if emotion == self.emotion:
            return False
        self.emotion = emotion
        self._notify()
        return True

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # --- Gestures ---

    def tap(self) -> bool:
        """Flash Alert briefly, then hand control to the activation callback"""

        if self.state != CompanionState.IDLE:
            return False

        self.update_state(CompanionState.ALERT, trigger="tap")

        def finish() -> None:
            self.update_state(CompanionState.IDLE, trigger="tap")
            self._activate()

        self._schedule(self.tap_alert_delay, finish)
        return True

    def alert(self, trigger: str = "alert") -> bool:
        """Show Alert for ``tap_alert_delay`` and settle back to Idle"""

        if not self.update_state(CompanionState.ALERT, trigger=trigger):
            return False

        def settle() -> None:
            if self.state == CompanionState.ALERT:
                self.update_state(CompanionState.IDLE, trigger=trigger)

        self._schedule(self.tap_alert_delay, settle)
        return True

    def long_press(self) -> bool:
        if self.state != CompanionState.IDLE:
            return False

        self.update_state(CompanionState.LISTENING, trigger="long_press")

        def processing() -> None:
            if self.update_state(CompanionState.THINKING, trigger="long_press"):
                self._schedule(self.listen_processing_delay, lambda: self.speak(LONG_PRESS_MESSAGE))

        self._schedule(self.listen_capture_delay, processing)
        return True

    def receive_from_primary(
        self,
        message: str,
        emotion: EmotionLabel,
        has_concerns: bool = False,
        description: Optional[str] = None
    ) -> bool:
        """Take context shared by the primary agent and acknowledge it"""

        self.update_emotion(emotion)
        # The pipeline may already have moved the companion to Thinking
        if self.state != CompanionState.THINKING and not self.update_state(CompanionState.THINKING, trigger="receive"):
            return False

        self.last_message = message
        if self.context_store is not None:
            self.context_store.update(companion_agent_text=message)

        logger.debug("Received context from primary agent", has_concerns=has_concerns)

        if has_concerns:
            def raise_alert() -> None:
                self.update_state(CompanionState.ALERT, trigger="concerns")
                self.speak(description or DEFAULT_CONCERN_MESSAGE)

            def acknowledge() -> None:
                self.speak(
                    f"{self.primary_agent_name} has shared context with me. One moment...",
                    on_complete=lambda: self._schedule(self.concern_alert_delay, raise_alert)
                )
        else:
            def acknowledge() -> None:
                self.speak(f"{self.primary_agent_name} has shared some context with me. I'll keep that in mind.")

        self._schedule(self.receive_delay, acknowledge)
        return True

    def speak(self, text: str, on_complete: Optional[Callable[[], None]] = None) -> bool:
        """Say ``text``; returns to Idle and runs ``on_complete`` when speech ends"""

        if self.state == CompanionState.SPEAKING:
            return False
        if not self.update_state(CompanionState.SPEAKING, trigger="speak"):
            return False

        generation = self._generation

        def done() -> None:
            if generation != self._generation:
                return
            self.update_state(CompanionState.IDLE, trigger="speech_done")
            if on_complete is not None:
                on_complete()

        self.speaker.speak(text, done)
        return True

    def cancel_pending(self) -> None:
        """Drop every scheduled step and ignore speech still in progress"""

        for call in self._pending:
            call.cancel()
        self._pending.clear()
        self._generation += 1

    def get_info(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "emotion": self.emotion.value,
            "last_message": self.last_message
        }

    # --- Internals ---

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        generation = self._generation
        handle: Optional[ScheduledCall] = None

        def run() -> None:
            if handle in self._pending:
                self._pending.remove(handle)
            if generation == self._generation:
                callback()

        handle = self.scheduler.call_later(delay, run)
        self._pending.append(handle)

    def _activate(self) -> None:
        if self.on_activate is None:
            return

        result = self.on_activate()
        if not inspect.isawaitable(result):
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; activation dropped")
            if inspect.iscoroutine(result):
                result.close()
            return

        task = asyncio.ensure_future(result)
        self._activation_tasks.add(task)
        task.add_done_callback(self._activation_tasks.discard)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state, self.emotion)
            except Exception as e:
                logger.error("Companion listener failed", error=str(e))

from typing import TypedDict, Annotated, Any, Awaitable, Callable, Dict, List, Optional
from langgraph.graph import StateGraph, END
from langgraph.graph.message import add_messages
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage
import asyncio
import operator
import random
import time
import uuid
import structlog

from aurakai.domain.collaborators import AudioCapture, SecuritySource, Transcriber
from aurakai.domain.companion.companion_state_machine import CompanionStateMachine
from aurakai.domain.context.context_ranker import CompanionRouter, RoutingDecision
from aurakai.domain.context.memory.conversation_history import ConversationHistory
from aurakai.domain.context.memory.preference_model import UserPreferenceModel
from aurakai.domain.emotion.emotion_classifier import EmotionClassifier
from aurakai.domain.emotion.features import extract_features
from aurakai.domain.models.agent_state import CompanionState, ConversationState, ConversationStatus
from aurakai.domain.models.context import AudioBuffer, ConversationEntry, EmotionLabel, SecuritySnapshot
from aurakai.domain.orchestration.core.orchestrator import Orchestrator
from aurakai.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

# Used when transcription fails or hears nothing
FALLBACK_TRANSCRIPTS = (
    "Can you help me with something?",
    "What is on my schedule today?",
    "Tell me something interesting.",
    "How is everything going?",
)

StageListener = Callable[[str, Dict[str, Any]], None]


class PipelineState(TypedDict):
    """State for the conversation graph"""
    messages: Annotated[List[BaseMessage], add_messages]
    run_id: str
    audio: Optional[AudioBuffer]
    emotion: Optional[EmotionLabel]
    transcript: Optional[str]
    routing: Optional[RoutingDecision]
    forwarded: bool
    response: Optional[str]
    error: Optional[str]
    stage_trace: Annotated[List[str], operator.add]


class ConversationPipeline:
    """Turns one captured utterance into a routed, contextual response.

    Runs are single flight: ``start_listening`` only starts from Idle, and the
    switch to Listening happens before anything is awaited.
    """

    def __init__(
        self,
        capture: AudioCapture,
        classifier: EmotionClassifier,
        router: CompanionRouter,
        orchestrator: Orchestrator,
        history: Optional[ConversationHistory] = None,
        preferences: Optional[UserPreferenceModel] = None,
        transcriber: Optional[Transcriber] = None,
        companion: Optional[CompanionStateMachine] = None,
        security: Optional[SecuritySource] = None,
        companion_name: str = "Kai",
        capture_duration_ms: int = 5000,
        capture_timeout: float = 6.0,
        collaborator_timeout: float = 30.0,
        history_window: int = 3,
        rng: Optional[random.Random] = None
    ):
        self.capture = capture
        self.classifier = classifier
        self.router = router
        self.orchestrator = orchestrator
        self.history = history or ConversationHistory()
        self.preferences = preferences or UserPreferenceModel()
        self.transcriber = transcriber
        self.companion = companion
        self.security = security
        self.companion_name = companion_name
        self.capture_duration_ms = capture_duration_ms
        self.capture_timeout = capture_timeout
        self.collaborator_timeout = collaborator_timeout
        self.history_window = history_window
        self.rng = rng or random.Random()

        self._state = ConversationState.idle()
        self._stage_listeners: List[StageListener] = []
        self.runs_completed = 0
        self.workflow = self._create_workflow()

    @property
    def state(self) -> ConversationState:
        return self._state

    def add_stage_listener(self, listener: StageListener) -> None:
        self._stage_listeners.append(listener)

    def _create_workflow(self):
        """Create the stage graph"""

        workflow = StateGraph(PipelineState)

        workflow.add_node("capture", self._stage("capture", self.capture_node))
        workflow.add_node("classify_emotion", self._stage("classify_emotion", self.classify_emotion_node))
        workflow.add_node("transcribe", self._stage("transcribe", self.transcribe_node))
        workflow.add_node("route", self._stage("route", self.route_node))
        workflow.add_node("respond", self._stage("respond", self.respond_node))
        workflow.add_node("record", self._stage("record", self.record_node))
        workflow.add_node("error_handler", self.error_handler_node)

        workflow.set_entry_point("capture")

        sequence = ["capture", "classify_emotion", "transcribe", "route", "respond", "record"]
        for current, following in zip(sequence, sequence[1:] + [END]):
            workflow.add_conditional_edges(
                current,
                self.check_stage_result,
                {
                    "continue": following,
                    "error": "error_handler"
                }
            )

        workflow.add_edge("error_handler", END)

        return workflow.compile()

    # --- Public operations ---

    async def start_listening(self) -> bool:
        """Run one full pipeline; returns False without doing anything unless Idle"""

        if self._state.status != ConversationStatus.IDLE:
            logger.info("Pipeline busy, start rejected", status=self._state.status.value)
            return False
        self._set_status(ConversationStatus.LISTENING)

        run_id = str(uuid.uuid4())
        initial: PipelineState = {
            "messages": [],
            "run_id": run_id,
            "audio": None,
            "emotion": None,
            "transcript": None,
            "routing": None,
            "forwarded": False,
            "response": None,
            "error": None,
            "stage_trace": []
        }

        with structlog.contextvars.bound_contextvars(run_id=run_id):
            try:
                final = await self.workflow.ainvoke(initial)
                logger.info("Pipeline run finished", trace=final.get("stage_trace"), status=self._state.status.value)
            except Exception as e:
                self._fail(str(e) or type(e).__name__)
            finally:
                if self._state.is_busy:
                    self._fail("Pipeline stopped before completing")

        return True

    def reset(self) -> bool:
        """Return a finished run to Idle; refused while a run is in progress"""

        if self._state.is_busy:
            return False
        if self._state.status != ConversationStatus.IDLE:
            self._set_status(ConversationStatus.IDLE, replace=True)
        return True

    async def listen_again(self) -> bool:
        if not self.reset():
            return False
        return await self.start_listening()

    def build_conversation_context(self, emotion: EmotionLabel) -> str:
        """History, emotional state and learned preferences for the prompt"""

        lines = []
        recent = self.history.recent(self.history_window)
        if recent:
            lines.append("Previous conversation:")
            for entry in recent:
                lines.append(f"User: {entry.user_input}")
                lines.append(f"Assistant: {entry.response}")

        lines.append(f"User's emotional state: {emotion.value}")

        for keyword, score in self.preferences.top(5).items():
            lines.append(f"User preference - {keyword}: {score:.2f}")

        return "\n".join(lines)

    # --- Stage nodes ---

    async def capture_node(self, state: PipelineState) -> Dict[str, Any]:
        self._companion_state(CompanionState.LISTENING)
        audio = await asyncio.wait_for(
            self.capture.capture(self.capture_duration_ms),
            timeout=self.capture_timeout
        )
        self._emit("capture", {"duration_ms": audio.duration_ms, "samples": len(audio.samples)})
        return {"audio": audio}

    async def classify_emotion_node(self, state: PipelineState) -> Dict[str, Any]:
        features = extract_features(state["audio"])
        emotion = await self.classifier.classify(features)

        if self.companion is not None:
            self.companion.update_emotion(emotion)
        self._companion_state(CompanionState.THINKING)
        self._set_status(ConversationStatus.PROCESSING, emotion=emotion)

        self._emit("classify_emotion", {"emotion": emotion.value})
        return {"emotion": emotion}

    async def transcribe_node(self, state: PipelineState) -> Dict[str, Any]:
        transcript = None
        if self.transcriber is not None:
            try:
                transcript = await asyncio.wait_for(
                    self.transcriber.transcribe(state["audio"]),
                    timeout=self.collaborator_timeout
                )
            except Exception as e:
                logger.warning("Transcription failed", error=str(e) or type(e).__name__)

        fallback = not transcript or not transcript.strip()
        if fallback:
            transcript = self.rng.choice(FALLBACK_TRANSCRIPTS)
            metrics.increment_counter("pipeline.transcript.fallback")
        else:
            transcript = transcript.strip()

        self._set_status(ConversationStatus.PROCESSING, transcript=transcript)
        self._emit("transcribe", {"transcript": transcript, "fallback": fallback})
        return {"transcript": transcript, "messages": [HumanMessage(content=transcript)]}

    async def route_node(self, state: PipelineState) -> Dict[str, Any]:
        transcript = state["transcript"]
        decision = self.router.score(transcript)
        forwarded = decision.forward and self.companion is not None

        if forwarded:
            message = self.router.enrich(
                f"User asked about: {transcript}",
                self.history.recent(self.history_window)
            )
            snapshot = self._security_snapshot()
            has_concerns = snapshot is not None and snapshot.has_concerns
            self.companion.receive_from_primary(
                message,
                state["emotion"],
                has_concerns=has_concerns,
                description=snapshot.describe_concerns() if has_concerns else None
            )
            metrics.increment_counter("pipeline.forwarded")

        self._emit("route", {"score": decision.score, "signal": decision.signal, "forward": forwarded})
        return {"routing": decision, "forwarded": forwarded}

    async def respond_node(self, state: PipelineState) -> Dict[str, Any]:
        response = await self.orchestrator.process_request(
            state["transcript"],
            conversation_context=self.build_conversation_context(state["emotion"])
        )

        if state["forwarded"]:
            response = (
                f"{response}\n\n{self.companion_name} is also aware of this context "
                "and will provide ambient support."
            )

        self._emit("respond", {"response": response})
        return {"response": response, "messages": [AIMessage(content=response)]}

    async def record_node(self, state: PipelineState) -> Dict[str, Any]:
        entry = ConversationEntry(
            user_input=state["transcript"],
            response=state["response"],
            emotion=state["emotion"]
        )
        self.history.append(entry)
        self.preferences.update(entry.user_input, entry.emotion)

        if not state["forwarded"]:
            self._companion_state(CompanionState.IDLE)

        self._set_status(
            ConversationStatus.READY,
            response=state["response"],
            forwarded=state["forwarded"]
        )
        self.runs_completed += 1
        metrics.increment_counter("pipeline.completed")

        self._emit("record", {"history_size": len(self.history)})
        return {}

    async def error_handler_node(self, state: PipelineState) -> Dict[str, Any]:
        """Surface the failure; the run ends here"""
        self._fail(state["error"] or "Unknown error")
        return {"stage_trace": ["error_handler"]}

    def check_stage_result(self, state: PipelineState) -> str:
        return "error" if state.get("error") else "continue"

    # --- Helpers ---

    def _stage(
        self,
        name: str,
        node: Callable[[PipelineState], Awaitable[Dict[str, Any]]]
    ) -> Callable[[PipelineState], Awaitable[Dict[str, Any]]]:
        """Time a stage and turn its exception into graph state"""

        async def run(state: PipelineState) -> Dict[str, Any]:
            started = time.perf_counter()
            try:
                update = await node(state)
            except Exception as e:
                error = str(e) or type(e).__name__
                duration_ms = (time.perf_counter() - started) * 1000
                agent_logger.log_pipeline_stage(name, duration_ms, success=False, error=error)
                return {"error": f"{name} failed: {error}", "stage_trace": [name]}

            duration_ms = (time.perf_counter() - started) * 1000
            agent_logger.log_pipeline_stage(name, duration_ms)
            metrics.record_latency(f"pipeline.{name}", duration_ms)
            return {**update, "stage_trace": [name]}

        return run

    def _fail(self, reason: str) -> None:
        logger.error("Pipeline run failed", error=reason)
        self._set_status(ConversationStatus.ERROR, error=reason)
        if self.companion is not None:
            self.companion.alert(trigger="pipeline_error")
        metrics.increment_counter("pipeline.error")
        self._emit("error", {"error": reason})

    def _set_status(self, status: ConversationStatus, replace: bool = False, **fields: Any) -> None:
        previous = self._state.status
        if replace or status == ConversationStatus.LISTENING:
            self._state = ConversationState(status=status, **fields)
        else:
            self._state = self._state.model_copy(update={"status": status, **fields})
        if previous != status:
            agent_logger.log_state_transition("pipeline", previous.value, status.value)

    def _companion_state(self, target: CompanionState) -> None:
        if self.companion is not None:
            self.companion.update_state(target, trigger="pipeline")

    def _security_snapshot(self) -> Optional[SecuritySnapshot]:
        if self.security is None:
            return None
        try:
            return self.security.snapshot()
        except Exception as e:
            logger.warning("Security snapshot unavailable", error=str(e))
            return None

    def _emit(self, stage: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._stage_listeners):
            try:
                listener(stage, payload)
            except Exception as e:
                logger.error("Stage listener failed", stage=stage, error=str(e))

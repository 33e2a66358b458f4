"""
Tests for the conversation pipeline
"""
import asyncio
import random

import pytest

from conftest import FakeCapture, FakeGenerator, FakeSecurity, FakeTranscriber, RecordingSpeaker
from aurakai.domain.companion.companion_state_machine import CompanionStateMachine
from aurakai.domain.context.context_ranker import CompanionRouter
from aurakai.domain.context.context_store import ContextStore
from aurakai.domain.emotion.emotion_classifier import EmotionClassifier
from aurakai.domain.models.agent_state import CompanionState, ConversationStatus
from aurakai.domain.models.context import SecuritySnapshot
from aurakai.domain.orchestration.core.orchestrator import Orchestrator
from aurakai.domain.pipeline.conversation_pipeline import FALLBACK_TRANSCRIPTS, ConversationPipeline
from aurakai.infrastructure.observability.logging import metrics

AWARENESS_SUFFIX = "\n\nKai is also aware of this context and will provide ambient support."


@pytest.fixture
def speaker():
    return RecordingSpeaker()


@pytest.fixture
def companion(scheduler, speaker):
    return CompanionStateMachine(scheduler, speaker)


def make_pipeline(
    companion=None,
    capture=None,
    transcriber=None,
    generator=None,
    security=None,
    rng=None
):
    generator = generator or FakeGenerator()
    return ConversationPipeline(
        capture=capture or FakeCapture(),
        classifier=EmotionClassifier(),
        router=CompanionRouter("Kai"),
        orchestrator=Orchestrator(ContextStore(), generator),
        transcriber=transcriber or FakeTranscriber("I like cats"),
        companion=companion,
        security=security,
        capture_duration_ms=200,
        rng=rng
    )


@pytest.mark.asyncio
async def test_run_reaches_ready(companion):
    pipeline = make_pipeline(companion)

    assert await pipeline.start_listening() is True

    state = pipeline.state
    assert state.status == ConversationStatus.READY
    assert state.transcript == "I like cats"
    assert state.response == "Here is what I found."
    assert state.forwarded is False
    assert state.emotion is not None
    assert len(pipeline.history) == 1
    assert pipeline.runs_completed == 1
    assert companion.state == CompanionState.IDLE


@pytest.mark.asyncio
async def test_concurrent_starts_run_once():
    capture = FakeCapture(delay=0.05)
    pipeline = make_pipeline(capture=capture)

    results = await asyncio.gather(pipeline.start_listening(), pipeline.start_listening())

    assert sorted(results) == [False, True]
    assert capture.calls == 1
    assert len(pipeline.history) == 1


@pytest.mark.asyncio
async def test_start_rejected_until_reset():
    pipeline = make_pipeline()
    await pipeline.start_listening()

    assert await pipeline.start_listening() is False
    assert pipeline.reset() is True
    assert pipeline.state.status == ConversationStatus.IDLE
    assert pipeline.state.response is None
    assert await pipeline.listen_again() is True
    assert len(pipeline.history) == 2


@pytest.mark.asyncio
async def test_blank_transcript_uses_seeded_fallback():
    pipeline = make_pipeline(transcriber=FakeTranscriber("   "), rng=random.Random(7))
    expected = random.Random(7).choice(FALLBACK_TRANSCRIPTS)
    fallbacks_before = metrics.counters.get("pipeline.transcript.fallback", 0)

    await pipeline.start_listening()

    assert pipeline.state.transcript == expected
    assert pipeline.state.status == ConversationStatus.READY
    assert metrics.counters["pipeline.transcript.fallback"] == fallbacks_before + 1


@pytest.mark.asyncio
async def test_failed_transcription_uses_fallback():
    pipeline = make_pipeline(transcriber=FakeTranscriber(error=RuntimeError("no speech service")))

    await pipeline.start_listening()

    assert pipeline.state.transcript in FALLBACK_TRANSCRIPTS


@pytest.mark.asyncio
async def test_forwarded_request_gets_awareness_suffix(companion, scheduler, speaker):
    pipeline = make_pipeline(companion, transcriber=FakeTranscriber("Kai, remind me to call mom"))

    await pipeline.start_listening()

    assert pipeline.state.forwarded is True
    assert pipeline.state.response == "Here is what I found." + AWARENESS_SUFFIX
    assert companion.last_message.startswith("User asked about: Kai, remind me to call mom")
    assert companion.state == CompanionState.THINKING

    scheduler.advance(1.0)
    assert speaker.spoken == ["Aura has shared some context with me. I'll keep that in mind."]


@pytest.mark.asyncio
async def test_forwarding_passes_security_concerns(companion, scheduler, speaker):
    security = FakeSecurity(SecuritySnapshot(cpu_usage=95.0))
    pipeline = make_pipeline(
        companion,
        transcriber=FakeTranscriber("Kai, what's next?"),
        security=security
    )

    await pipeline.start_listening()
    scheduler.advance(1.0)
    speaker.finish()
    scheduler.advance(1.5)

    assert speaker.spoken[0] == "Aura has shared context with me. One moment..."
    assert speaker.spoken[1] == "CPU usage is high at 95%."


@pytest.mark.asyncio
async def test_no_companion_means_no_forwarding():
    pipeline = make_pipeline(transcriber=FakeTranscriber("Kai, remind me to call mom"))

    await pipeline.start_listening()

    assert pipeline.state.forwarded is False
    assert pipeline.state.response == "Here is what I found."


@pytest.mark.asyncio
async def test_capture_failure_ends_in_error(companion):
    pipeline = make_pipeline(companion, capture=FakeCapture(error=RuntimeError("mic unplugged")))
    errors_before = metrics.counters.get("pipeline.error", 0)

    assert await pipeline.start_listening() is True

    assert pipeline.state.status == ConversationStatus.ERROR
    assert pipeline.state.error == "capture failed: mic unplugged"
    assert companion.state == CompanionState.ALERT
    assert metrics.counters["pipeline.error"] == errors_before + 1
    assert len(pipeline.history) == 0

    assert pipeline.reset() is True
    assert pipeline.state.error is None


@pytest.mark.asyncio
async def test_companion_recovers_from_pipeline_error(companion, scheduler):
    pipeline = make_pipeline(companion, capture=FakeCapture(error=RuntimeError("mic unplugged")))

    await pipeline.start_listening()
    assert companion.state == CompanionState.ALERT

    scheduler.advance(companion.tap_alert_delay)

    assert companion.state == CompanionState.IDLE
    assert companion.long_press() is True


@pytest.mark.asyncio
async def test_generation_failure_still_completes():
    pipeline = make_pipeline(generator=FakeGenerator(error=RuntimeError("backend down")))

    await pipeline.start_listening()

    assert pipeline.state.status == ConversationStatus.READY
    assert pipeline.state.response.startswith("I apologize")


@pytest.mark.asyncio
async def test_stage_listeners_see_every_stage():
    pipeline = make_pipeline()
    stages = []
    pipeline.add_stage_listener(lambda stage, payload: stages.append(stage))
    pipeline.add_stage_listener(lambda stage, payload: 1 / 0)

    await pipeline.start_listening()

    assert stages == ["capture", "classify_emotion", "transcribe", "route", "respond", "record"]


@pytest.mark.asyncio
async def test_prompt_carries_history_and_preferences():
    generator = FakeGenerator()
    pipeline = make_pipeline(generator=generator)

    await pipeline.listen_again()
    await pipeline.listen_again()

    prompt = generator.prompts[-1]
    assert "Previous conversation:\nUser: I like cats\nAssistant: Here is what I found." in prompt
    assert "User's emotional state: " in prompt
    assert "User preference - cats: " in prompt
    assert "Previous conversation:" not in generator.prompts[0]

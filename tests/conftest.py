"""
Pytest configuration and fixtures
"""
import asyncio
from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest

from aurakai.domain.context.context_store import ContextStore
from aurakai.domain.models.context import AudioBuffer, SecuritySnapshot, VoiceFeatures
from aurakai.infrastructure.config.settings import Settings
from aurakai.infrastructure.persistence.durable_store import InMemoryDurableStore
from aurakai.infrastructure.scheduling.scheduler import VirtualClockScheduler


class FakeGenerator:
    """Generation backend returning canned replies and recording prompts"""

    def __init__(self, reply: str = "Here is what I found.", error: Optional[Exception] = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeCapture:
    """Audio capture producing a short tone, optionally after a delay"""

    def __init__(self, delay: float = 0.0, error: Optional[Exception] = None):
        self.delay = delay
        self.error = error
        self.calls = 0

    async def capture(self, duration_ms: int) -> AudioBuffer:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        sample_rate = 8000
        count = int(sample_rate * duration_ms / 1000)
        samples = (0.5 * np.sin(2 * np.pi * 200 * np.arange(count) / sample_rate)).tolist()
        return AudioBuffer(samples=samples, sample_rate=sample_rate, duration_ms=duration_ms)


class FakeTranscriber:
    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error

    async def transcribe(self, audio: AudioBuffer) -> str:
        if self.error is not None:
            raise self.error
        return self.text


class FakeEmotionModel:
    def __init__(self, probabilities: Sequence[float] = (), error: Optional[Exception] = None):
        self.probabilities = probabilities
        self.error = error
        self.calls: List[VoiceFeatures] = []

    async def classify(self, features: VoiceFeatures) -> Sequence[float]:
        self.calls.append(features)
        if self.error is not None:
            raise self.error
        return self.probabilities


class FakeSecurity:
    def __init__(self, snapshot: Optional[SecuritySnapshot] = None):
        self.current = snapshot or SecuritySnapshot(ram_usage=40.0, cpu_usage=20.0, battery_temp=30.0)

    def snapshot(self) -> SecuritySnapshot:
        return self.current


class RecordingSpeaker:
    """Speaker that only finishes when the test says so"""

    def __init__(self):
        self.spoken: List[str] = []
        self._done: List[Callable[[], None]] = []

    def speak(self, text: str, on_done: Callable[[], None]) -> None:
        self.spoken.append(text)
        self._done.append(on_done)

    def finish(self) -> None:
        self._done.pop(0)()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        capture_duration_ms=200,
        capture_grace_ms=500,
        collaborator_timeout_s=2.0,
        context_store_path=None
    )


@pytest.fixture
def scheduler() -> VirtualClockScheduler:
    return VirtualClockScheduler()


@pytest.fixture
def durable_store() -> InMemoryDurableStore:
    return InMemoryDurableStore()


@pytest.fixture
def context_store(durable_store) -> ContextStore:
    return ContextStore(durable_store)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def security() -> FakeSecurity:
    return FakeSecurity()

"""
Interfaces of the external collaborators the core depends on.

Generation, transcription and emotion scoring are black boxes; every call made
through these interfaces is bounded and mapped to a fallback by its caller.
"""

from typing import Callable, Optional, Protocol, Sequence, runtime_checkable

from aurakai.domain.models.context import AudioBuffer, SecuritySnapshot, VisionSnapshot, VoiceFeatures


@runtime_checkable
class GenerationBackend(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


@runtime_checkable
class AudioCapture(Protocol):
    async def capture(self, duration_ms: int) -> AudioBuffer:
        ...


@runtime_checkable
class Transcriber(Protocol):
    async def transcribe(self, audio: AudioBuffer) -> str:
        ...


@runtime_checkable
class EmotionModel(Protocol):
    """Scores features against the classifier's fixed label order"""

    async def classify(self, features: VoiceFeatures) -> Sequence[float]:
        ...


@runtime_checkable
class DurableStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def put(self, key: str, value: str) -> None:
        ...


@runtime_checkable
class Speaker(Protocol):
    """Speech output; ``on_done`` is called exactly once when speech finishes"""

    def speak(self, text: str, on_done: Callable[[], None]) -> None:
        ...


@runtime_checkable
class VisionProvider(Protocol):
    def latest(self) -> Optional[VisionSnapshot]:
        ...


class SilentAudioCapture:
    """Capture stand-in for headless deployments; yields silence of the requested length"""

    def __init__(self, sample_rate: int = 16000):
        self.sample_rate = sample_rate

    async def capture(self, duration_ms: int) -> AudioBuffer:
        sample_count = int(self.sample_rate * duration_ms / 1000)
        return AudioBuffer(
            samples=[0.0] * sample_count,
            sample_rate=self.sample_rate,
            duration_ms=duration_ms
        )


@runtime_checkable
class SecuritySource(Protocol):
    def snapshot(self) -> SecuritySnapshot:
        ...

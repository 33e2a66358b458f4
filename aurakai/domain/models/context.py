from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field
from datetime import datetime
from enum import Enum
import uuid


class EmotionLabel(str, Enum):
    """Emotional states detected from voice or text, or shown by an agent"""
    NEUTRAL = "neutral"
    HAPPY = "happy"
    EXCITED = "excited"
    SAD = "sad"
    ANGRY = "angry"
    TIRED = "tired"
    CURIOUS = "curious"
    CONCERNED = "concerned"
    CALM = "calm"
    CONFUSED = "confused"


# Thresholds for security concern flags
RAM_CONCERN_PERCENT = 80.0
CPU_CONCERN_PERCENT = 85.0
TEMP_CONCERN_CELSIUS = 40.0


class SecuritySnapshot(BaseModel):
    """Point-in-time resource, battery and error metrics"""
    model_config = ConfigDict(frozen=True)

    ram_usage: float = Field(default=0.0, description="RAM usage percent")
    cpu_usage: float = Field(default=0.0, description="CPU usage percent")
    battery_temp: float = Field(default=0.0, description="Battery temperature in Celsius")
    battery_level: Optional[int] = Field(None, description="Battery level percent")
    is_charging: bool = False
    recent_errors: int = Field(default=0, ge=0)
    captured_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def is_low_memory(self) -> bool:
        return self.ram_usage > RAM_CONCERN_PERCENT

    @computed_field
    @property
    def is_cpu_stressed(self) -> bool:
        return self.cpu_usage > CPU_CONCERN_PERCENT

    @computed_field
    @property
    def is_overheating(self) -> bool:
        return self.battery_temp > TEMP_CONCERN_CELSIUS

    @computed_field
    @property
    def has_recent_errors(self) -> bool:
        return self.recent_errors > 0

    @property
    def has_concerns(self) -> bool:
        return (
            self.is_low_memory
            or self.is_cpu_stressed
            or self.is_overheating
            or self.has_recent_errors
        )

    def describe_concerns(self) -> Optional[str]:
        """Human readable summary of raised flags, None when all clear"""
        concerns = []
        if self.is_low_memory:
            concerns.append(f"Memory usage is high at {self.ram_usage:.0f}%.")
        if self.is_cpu_stressed:
            concerns.append(f"CPU usage is high at {self.cpu_usage:.0f}%.")
        if self.is_overheating:
            concerns.append(f"Battery temperature is {self.battery_temp:.1f}°C.")
        if self.has_recent_errors:
            concerns.append(f"{self.recent_errors} recent error(s) were recorded.")
        return " ".join(concerns) if concerns else None


class VisionSnapshot(BaseModel):
    """Latest visual analysis offered by a vision collaborator"""
    model_config = ConfigDict(frozen=True)

    environment: str = ""
    objects: List[str] = Field(default_factory=list)
    mood: str = ""

    def summary(self) -> str:
        return (
            f"Environment: {self.environment}\n"
            f"Objects Detected: {', '.join(self.objects)}\n"
            f"Emotional Analysis: {self.mood}"
        )


class ContextRecord(BaseModel):
    """Shared context between the primary agent, the companion and the orchestrator.

    Records are immutable; ``merged`` builds the successor record.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    user_text: str = ""
    primary_agent_text: str = ""
    companion_agent_text: str = ""
    auxiliary_text: str = ""
    emotion: EmotionLabel = EmotionLabel.NEUTRAL
    security_snapshot: Optional[SecuritySnapshot] = None

    def merged(self, **fields: Any) -> "ContextRecord":
        """Return a new record overriding only the supplied non-None fields"""
        updates: Dict[str, Any] = {
            key: value for key, value in fields.items() if value is not None
        }
        unknown = set(updates) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown context fields: {sorted(unknown)}")
        updates.pop("id", None)

        # Never step backwards when the wall clock does
        now = datetime.utcnow()
        updates["timestamp"] = now if now >= self.timestamp else self.timestamp

        data = dict(self)
        data.update(updates)
        return type(self).model_validate(data)


class ConversationEntry(BaseModel):
    """One completed conversation turn"""
    model_config = ConfigDict(frozen=True)

    user_input: str
    response: str
    emotion: EmotionLabel = EmotionLabel.NEUTRAL
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class VoiceFeatures(BaseModel):
    """Prosodic features used for emotion classification"""
    model_config = ConfigDict(frozen=True)

    pitch_hz: float = Field(default=0.0, ge=0.0)
    intensity: float = Field(default=0.0, ge=0.0, le=1.0)
    speech_rate: float = Field(default=0.0, ge=0.0, description="Syllables per second")


class AudioBuffer(BaseModel):
    """Mono PCM samples normalised to -1..1"""
    samples: List[float] = Field(default_factory=list)
    sample_rate: int = Field(default=16000, gt=0)
    duration_ms: int = Field(default=0, ge=0)

    @property
    def seconds(self) -> float:
        if self.samples:
            return len(self.samples) / self.sample_rate
        return self.duration_ms / 1000.0

from typing import Optional, Sequence, Tuple
import asyncio
import math
import structlog

from aurakai.domain.collaborators import EmotionModel
from aurakai.domain.models.context import EmotionLabel, VoiceFeatures
from aurakai.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

# Order of the probabilities returned by the emotion model
MODEL_LABELS: Tuple[EmotionLabel, ...] = (
    EmotionLabel.NEUTRAL,
    EmotionLabel.HAPPY,
    EmotionLabel.SAD,
    EmotionLabel.ANGRY,
    EmotionLabel.EXCITED,
    EmotionLabel.TIRED,
)


def classify_by_heuristic(pitch_hz: float, intensity: float, speech_rate: float) -> EmotionLabel:
    """Threshold rule over pitch (Hz), intensity (0..1) and rate (syllables/sec)"""

    if pitch_hz > 250 and intensity > 0.7:
        return EmotionLabel.EXCITED if speech_rate > 4.5 else EmotionLabel.ANGRY
    if pitch_hz < 180 and intensity < 0.3:
        return EmotionLabel.SAD if speech_rate < 3.0 else EmotionLabel.TIRED
    if speech_rate > 4.0:
        return EmotionLabel.HAPPY
    return EmotionLabel.NEUTRAL


class EmotionClassifier:
    """Resolves voice features to an emotion label; never raises"""

    def __init__(self, model: Optional[EmotionModel] = None, timeout: float = 5.0):
        self.model = model
        self.timeout = timeout

    async def classify(self, features: VoiceFeatures) -> EmotionLabel:
        if self.model is not None:
            try:
                probabilities = await asyncio.wait_for(self.model.classify(features), timeout=self.timeout)
                label = self._arg_max(probabilities)
                metrics.increment_counter("emotion.model")
                return label
            except Exception as e:
                logger.warning("Emotion model unavailable, using heuristic", error=str(e) or type(e).__name__)

        metrics.increment_counter("emotion.heuristic")
        return classify_by_heuristic(features.pitch_hz, features.intensity, features.speech_rate)

    @staticmethod
    def _arg_max(probabilities: Sequence[float]) -> EmotionLabel:
        scores = [float(p) for p in probabilities]
        if len(scores) != len(MODEL_LABELS):
            raise ValueError(f"Expected {len(MODEL_LABELS)} probabilities, got {len(scores)}")
        if any(math.isnan(p) for p in scores):
            raise ValueError("Emotion model returned NaN")

        best = max(range(len(scores)), key=lambda i: scores[i])
        return MODEL_LABELS[best]

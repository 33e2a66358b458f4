from typing import Dict, List
import re

from aurakai.domain.models.context import EmotionLabel

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "you", "me", "my", "is", "are", "was", "can", "what", "with", "this", "that",
})

# Keywords said in a positive mood count for more
EMOTION_WEIGHTS: Dict[EmotionLabel, float] = {
    EmotionLabel.EXCITED: 1.5,
    EmotionLabel.HAPPY: 1.2,
    EmotionLabel.NEUTRAL: 1.0,
    EmotionLabel.TIRED: 0.9,
    EmotionLabel.CONCERNED: 0.8,
    EmotionLabel.SAD: 0.8,
    EmotionLabel.ANGRY: 0.6,
}


class UserPreferenceModel:
    """Learns which topics the user keeps returning to"""

    def __init__(self):
        self.scores: Dict[str, float] = {}

    def update(self, text: str, emotion: EmotionLabel) -> None:
        weight = EMOTION_WEIGHTS.get(emotion, 1.0)
        for keyword in self.extract_keywords(text):
            self.scores[keyword] = self.scores.get(keyword, 0.0) + weight

    def top(self, count: int = 5) -> Dict[str, float]:
        ranked = sorted(self.scores.items(), key=lambda item: (-item[1], item[0]))
        return dict(ranked[:count])

    @staticmethod
    def extract_keywords(text: str) -> List[str]:
        words = re.findall(r"[a-z0-9']+", text.lower())
        return [w for w in words if len(w) > 2 and w not in STOP_WORDS]

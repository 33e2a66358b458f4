from typing import Tuple
import re

from aurakai.domain.models.context import EmotionLabel

# Scanned in order; the first family found in the text wins. Keywords match at
# word starts only, so "unhappy" is Sad rather than a Happy substring hit.
TEXT_EMOTION_FAMILIES: Tuple[Tuple[EmotionLabel, re.Pattern], ...] = tuple(
    (label, re.compile(r"\b(?:" + "|".join(words) + r")", re.IGNORECASE))
    for label, words in (
        (EmotionLabel.HAPPY, ("happy", "excited", "glad", "joy")),
        (EmotionLabel.CURIOUS, ("curious", "interested", "inquisitive")),
        (EmotionLabel.CONCERNED, ("concerned", "worried", "cautious")),
        (EmotionLabel.SAD, ("sad", "unhappy", "disappointed")),
        (EmotionLabel.ANGRY, ("angry", "frustrated", "annoyed")),
        (EmotionLabel.CALM, ("calm", "relaxed", "peaceful")),
        (EmotionLabel.CONFUSED, ("confused", "puzzled", "uncertain")),
    )
)


def detect_text_emotion(text: str) -> EmotionLabel:
    for label, pattern in TEXT_EMOTION_FAMILIES:
        if pattern.search(text):
            return label
    return EmotionLabel.NEUTRAL

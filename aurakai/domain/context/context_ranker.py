from typing import Iterable, List, Sequence
from dataclasses import dataclass
import re

from aurakai.domain.models.context import ConversationEntry

COMPANION_KEYWORDS = (
    "help", "remind", "schedule", "remember", "note", "task", "todo",
    "meeting", "event", "alert", "notify", "warn", "important",
)

TIME_SENSITIVE_PHRASES = ("remind", "schedule", "meeting", "event", "appointment")

QUESTION_OPENERS = ("can you", "could you", "would you")
QUESTION_PHRASES = ("how to", "what is", "when is", "where is", "why is", "help me")

# Signal weights, checked in this order; the first match decides the score
DIRECT_MENTION_SCORE = 1.0
KEYWORD_QUESTION_SCORE = 0.9
TIME_SENSITIVE_SCORE = 0.8
KEYWORD_SCORE = 0.6
QUESTION_SCORE = 0.5

RESPONSE_PREVIEW_CHARS = 100


def _word_pattern(words: Iterable[str]) -> re.Pattern:
    # Plain inflections count: "reminders", "scheduled", "warning"
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})(?:s|es|ed|ing|er|ers)?\b", re.IGNORECASE)


@dataclass(frozen=True)
class RoutingDecision:
    score: float
    signal: str
    forward: bool


class CompanionRouter:
    """Scores transcripts to decide whether the companion should be told about them"""

    def __init__(
        self,
        companion_name: str = "Kai",
        aliases: Sequence[str] = (),
        threshold: float = 0.5,
        history_window: int = 3
    ):
        names = [companion_name, *aliases]
        self.threshold = threshold
        self.history_window = history_window
        self._mention = re.compile(
            r"\b(?:" + "|".join(re.escape(n) for n in names if n) + r")\b",
            re.IGNORECASE
        )
        self._keywords = _word_pattern(COMPANION_KEYWORDS)
        self._time_sensitive = _word_pattern(TIME_SENSITIVE_PHRASES)

    def is_question(self, text: str) -> bool:
        normalized = " ".join(text.lower().split())
        if normalized.endswith("?"):
            return True
        if normalized.startswith(QUESTION_OPENERS):
            return True
        return any(phrase in normalized for phrase in QUESTION_PHRASES)

    def score(self, text: str) -> RoutingDecision:
        """Score a transcript against the weighted routing signals"""

        if self._mention.search(text):
            score, signal = DIRECT_MENTION_SCORE, "direct_mention"
        else:
            has_keyword = bool(self._keywords.search(text))
            is_question = self.is_question(text)

            if has_keyword and is_question:
                score, signal = KEYWORD_QUESTION_SCORE, "keyword_question"
            elif self._time_sensitive.search(text):
                score, signal = TIME_SENSITIVE_SCORE, "time_sensitive"
            elif has_keyword:
                score, signal = KEYWORD_SCORE, "keyword"
            elif is_question:
                score, signal = QUESTION_SCORE, "question"
            else:
                score, signal = 0.0, "none"

        return RoutingDecision(score=score, signal=signal, forward=score >= self.threshold)

    def should_forward(self, text: str) -> bool:
        return self.score(text).forward

    def enrich(self, message: str, history: Sequence[ConversationEntry]) -> str:
        """Append the most recent turns to a message bound for the companion"""

        recent: List[ConversationEntry] = list(history)[-self.history_window:] if self.history_window else []
        if not recent:
            return message

        lines = "\n".join(
            f"User: {entry.user_input}\nResponse: {entry.response[:RESPONSE_PREVIEW_CHARS]}"
            for entry in recent
        )
        return f"{message}\n\nRecent context:\n{lines}"


from typing import Deque, List
from collections import deque
import threading

from aurakai.domain.models.context import ConversationEntry


class ConversationHistory:
    """Bounded, append-only record of completed conversation turns"""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._entries: Deque[ConversationEntry] = deque(maxlen=limit)
        self._lock = threading.Lock()

    def append(self, entry: ConversationEntry) -> None:
        """Add an entry, evicting the oldest once the limit is reached"""
        with self._lock:
            self._entries.append(entry)

    def recent(self, count: int = 3) -> List[ConversationEntry]:
        """Get the last ``count`` entries, oldest first"""
        if count <= 0:
            return []
        with self._lock:
            return list(self._entries)[-count:]

    def entries(self) -> List[ConversationEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

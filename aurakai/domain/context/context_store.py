from typing import Any, Callable, List, Optional, Set
import asyncio
import threading
import structlog
from pydantic import ValidationError

from aurakai.domain.collaborators import DurableStore
from aurakai.domain.models.context import ContextRecord
from aurakai.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

DEFAULT_CONTEXT_KEY = "ai_context_json"


class ContextStore:
    """Single source of truth for the context shared by all agents.

    The current record is replaced wholesale on every update; records are never
    mutated in place, so a reader always holds a complete snapshot. Durable
    writes are fire-and-forget: the in-memory record wins if a write fails.
    """

    def __init__(self, durable_store: Optional[DurableStore] = None, key: str = DEFAULT_CONTEXT_KEY):
        self.durable_store = durable_store
        self.key = key
        self._current = ContextRecord()
        self._lock = threading.Lock()
        self._listeners: List[Callable[[ContextRecord], None]] = []
        self._pending_writes: Set[asyncio.Task] = set()

    def get(self) -> ContextRecord:
        """Get the latest context snapshot"""
        return self._current

    def update(self, **fields: Any) -> ContextRecord:
        """Swap in a record built from the current one with the supplied fields overridden"""

        with self._lock:
            updated = self._current.merged(**fields)
            self._current = updated

        supplied = sorted(key for key, value in fields.items() if value is not None)
        agent_logger.log_context_update(updated.id, supplied)
        self._notify(updated)
        self._persist_in_background(updated)
        return updated

    def clear(self) -> ContextRecord:
        """Reset to an empty record"""

        cleared = ContextRecord()
        with self._lock:
            self._current = cleared

        agent_logger.log_context_update(cleared.id, [], action="clear")
        self._notify(cleared)
        self._persist_in_background(cleared)
        return cleared

    async def load(self) -> ContextRecord:
        """Restore the persisted record, falling back to an empty one"""

        if self.durable_store is None:
            return self._current

        loaded = ContextRecord()
        try:
            raw = await self.durable_store.get(self.key)
            if raw and raw.strip():
                loaded = ContextRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Failed to decode persisted context", key=self.key, error=str(e))
        except Exception as e:
            logger.error("Failed to load persisted context", key=self.key, error=str(e))

        with self._lock:
            self._current = loaded

        logger.info("Context loaded", record_id=loaded.id)
        return loaded

    def render_summary(self) -> str:
        """Combine all context sources into a prompt-ready block"""

        current = self._current
        lines = []
        if current.user_text.strip():
            lines.append(f"User context: {current.user_text}")
        if current.primary_agent_text.strip():
            lines.append(f"Primary agent's understanding: {current.primary_agent_text}")
        if current.companion_agent_text.strip():
            lines.append(f"Companion's perspective: {current.companion_agent_text}")
        if current.auxiliary_text.strip():
            lines.append(f"Auxiliary context: {current.auxiliary_text}")
        if current.security_snapshot is not None:
            lines.append("Security metrics available.")
        lines.append(f"Current emotion: {current.emotion.value}")
        return "\n".join(lines)

    def subscribe(self, listener: Callable[[ContextRecord], None]) -> None:
        """Register an observer called with every new record"""
        self._listeners.append(listener)

    async def flush(self) -> None:
        """Wait for outstanding background writes"""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def _notify(self, record: ContextRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.error("Context listener failed", error=str(e))

    def _persist_in_background(self, record: ContextRecord) -> None:
        if self.durable_store is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; context write skipped", record_id=record.id)
            return

        task = loop.create_task(self._persist(record))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist(self, record: ContextRecord) -> None:
        try:
            await self.durable_store.put(self.key, record.model_dump_json())
            metrics.increment_counter("context.persist.ok")
        except Exception as e:
            metrics.increment_counter("context.persist.failed")
            logger.error("Failed to persist context", record_id=record.id, error=str(e))

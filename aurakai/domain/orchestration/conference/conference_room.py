from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union
from collections import deque
from dataclasses import dataclass
from datetime import datetime
import inspect
import time
import structlog

from aurakai.domain.models.agent_state import AgentResponse, ConsensusResult
from aurakai.domain.orchestration.core.orchestrator import Orchestrator
from aurakai.domain.orchestration.subagent.agent import Agent
from aurakai.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

TaskThunk = Callable[[], Union[Any, Awaitable[Any]]]
WebhookCallback = Callable[[str, Any], None]

TASK_COMPLETED = "task_completed"
TASK_FAILED = "task_failed"


@dataclass
class QueuedTask:
    id: str
    thunk: TaskThunk


class ConferenceRoom:
    """Multi-agent session: shared context, fan-out rounds, consensus and a task queue.

    The task queue is pull-driven: nothing drains it except calls to
    ``process_next_async_task`` (or ``drain_async_tasks``). Tasks run in FIFO
    order and a failing task never affects the ones behind it.
    """

    def __init__(self, name: str, orchestrator: Orchestrator):
        self.name = name
        self.orchestrator = orchestrator
        self.created_at = datetime.utcnow()
        self.last_activity_at = self.created_at
        self.request_count = 0

        self._agents: Dict[str, Agent] = {}
        self._history: List[str] = []
        self._context: Dict[str, Any] = {}
        self._task_queue: Deque[QueuedTask] = deque()
        self._webhooks: List[WebhookCallback] = []
        self._error_log: List[str] = []
        self._custom_properties: Dict[str, Any] = {}

    # --- Participants and context ---

    def join(self, agent: Agent) -> None:
        """Add an agent; joining twice has no further effect"""
        if agent.name not in self.orchestrator.registry:
            self.orchestrator.registry.register(agent)
        if agent.name not in self._agents:
            self._agents[agent.name] = agent
            agent_logger.log_agent_event("joined", agent.name, room=self.name)

    def leave(self, agent: Agent) -> None:
        """Remove an agent if present"""
        if self._agents.pop(agent.name, None) is not None:
            agent_logger.log_agent_event("left", agent.name, room=self.name)

    @property
    def agents(self) -> List[Agent]:
        return list(self._agents.values())

    def broadcast_context(self, context: Dict[str, Any]) -> None:
        """Replace the shared context used by subsequent rounds"""
        self._context = dict(context)

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def distribute_context(self) -> None:
        """Push the shared context into every participant's working memory"""
        self.orchestrator.share_context_with_agents(self._context, self.agents)

    # --- Conversation ---

    def add_to_history(self, entry: str) -> None:
        self._history.append(entry)

    @property
    def history(self) -> List[str]:
        return list(self._history)

    def record_request(self) -> None:
        """Count a request and refresh the activity timestamp"""
        self.request_count += 1
        self.last_activity_at = datetime.utcnow()

    async def orchestrate_conversation(self, user_input: str) -> List[AgentResponse]:
        """Run one round with every participant; agents that fail simply do not answer"""

        self.record_request()
        with structlog.contextvars.bound_contextvars(room=self.name):
            responses = await self.orchestrator.participate_with_agents(
                self._context, self.agents, user_input
            )

            for agent_name, response in responses.items():
                self.add_to_history(f"{agent_name}: {response.content}")

            missing = [agent.name for agent in self.agents if agent.name not in responses]
            for agent_name in missing:
                self.log_error(f"Agent {agent_name} did not respond")

            logger.info("Conversation round completed", responded=len(responses), failed=len(missing))
        return list(responses.values())

    def aggregate_consensus(self, response_maps: List[Dict[str, AgentResponse]]) -> ConsensusResult:
        return self.orchestrator.aggregate_responses(response_maps)

    # --- Async task queue ---

    def register_webhook(self, callback: WebhookCallback) -> None:
        self._webhooks.append(callback)

    def queue_async_task(self, task_id: str, thunk: TaskThunk) -> None:
        self._task_queue.append(QueuedTask(task_id, thunk))

    @property
    def queue_size(self) -> int:
        return len(self._task_queue)

    async def process_next_async_task(self) -> Optional[Any]:
        """Run the task at the head of the queue.

        Returns the task's result, or None when the queue is empty or the task
        failed. The task is removed either way.
        """

        if not self._task_queue:
            return None

        task = self._task_queue.popleft()
        with structlog.contextvars.bound_contextvars(room=self.name):
            try:
                result = task.thunk()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                message = str(e) or "Unknown error"
                self.log_error(f"Async task failed: {message}")
                metrics.increment_counter("conference.task.failed")
                agent_logger.log_task_event(self.name, task.id, "failed", error=message)
                self._notify(TASK_FAILED, message)
                return None

            metrics.increment_counter("conference.task.completed")
            agent_logger.log_task_event(self.name, task.id, "completed")
            self._notify(TASK_COMPLETED, result)
        return result

    async def drain_async_tasks(self) -> int:
        """Pull tasks until the queue is empty; returns how many were processed"""
        processed = 0
        while self._task_queue:
            await self.process_next_async_task()
            processed += 1
        return processed

    def _notify(self, event: str, payload: Any) -> None:
        for callback in list(self._webhooks):
            try:
                callback(event, payload)
            except Exception as e:
                logger.error("Webhook callback failed", room=self.name, event=event, error=str(e))

    # --- Bookkeeping ---

    def log_error(self, error: str) -> None:
        """Record an error with a millisecond timestamp"""
        self._error_log.append(f"[{int(time.time() * 1000)}] {error}")

    @property
    def error_log(self) -> List[str]:
        return list(self._error_log)

    def clear_error_log(self) -> None:
        self._error_log.clear()

    def clear_history(self) -> None:
        self._history.clear()

    def clear_async_queue(self) -> None:
        self._task_queue.clear()

    def persist_history(self, persist: Callable[[List[str]], None]) -> None:
        persist(list(self._history))

    def load_history(self, load: Callable[[], List[str]]) -> None:
        entries = list(load())
        self._history.clear()
        self._history.extend(entries)

    def set_custom_property(self, key: str, value: Any) -> None:
        self._custom_properties[key] = value

    def get_custom_property(self, key: str) -> Optional[Any]:
        return self._custom_properties.get(key)

    @property
    def custom_properties(self) -> Dict[str, Any]:
        return dict(self._custom_properties)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "agents": [agent.name for agent in self.agents],
            "context": self.context,
            "history": self.history
        }

    def metadata(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "agent_count": len(self._agents),
            "request_count": self.request_count,
            "async_queue_size": len(self._task_queue),
            "error_count": len(self._error_log)
        }

import structlog
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Dict, Any, List, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "aurakai"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("AURAKAI_ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    # Conversation run and room identifiers are bound by the pipeline and rooms
    contextvars = structlog.contextvars.get_contextvars()
    for key in ("run_id", "room", "session_id"):
        if key in contextvars and key not in event_dict:
            event_dict[key] = contextvars[key]

    return event_dict


class AgentLogger:
    """Structured domain events; the event name is the subject of each method"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_agent_event(self, event_type: str, agent_name: str, data: Optional[Dict[str, Any]] = None, **kwargs):
        self.logger.info("agent_event", event_type=event_type, agent_name=agent_name, data=data or {}, **kwargs)

    def log_state_transition(self, component: str, from_state: str, to_state: str, trigger: Optional[str] = None):
        self.logger.info(
            "state_transition",
            component=component,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger
        )

    def log_pipeline_stage(
        self,
        stage: str,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None,
        **kwargs
    ):
        # Failed stages log at warning level
        log = self.logger.info if success else self.logger.warning
        log("pipeline_stage", stage=stage, duration_ms=duration_ms, success=success, error=error, **kwargs)

    def log_context_update(self, record_id: str, fields: List[str], action: str = "update"):
        self.logger.info("context_update", record_id=record_id, fields=fields, action=action)

    def log_task_event(self, room: str, task_id: str, outcome: str, error: Optional[str] = None):
        log = self.logger.info if error is None else self.logger.warning
        log("task_event", room=room, task_id=task_id, outcome=outcome, error=error)


# Global logger instance
agent_logger = AgentLogger("aurakai")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms if self.count else 0,
            "max": self.max_ms
        }


class MetricsCollector:
    """In-process counters, gauges and latency stats; tags only go to the debug log line"""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.latencies: Dict[str, LatencyStats] = {}
        self._lock = threading.Lock()

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        self._log("latency", operation, duration_ms, tags)

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + value
        self._log("counter", name, value, tags)

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self.gauges[name] = value
        self._log("gauge", name, value, tags)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Flat view: counters and gauges by name, latencies under ``latency.<operation>``"""

        with self._lock:
            summary: Dict[str, Any] = {**self.counters, **self.gauges}
            for operation, stats in self.latencies.items():
                summary[f"latency.{operation}"] = stats.summary()
        return summary

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.latencies.clear()

    @staticmethod
    def _log(metric_type: str, name: str, value: float, tags: Optional[Dict[str, str]]):
        agent_logger.logger.debug("metric", metric_type=metric_type, name=name, value=value, tags=tags or {})


# Global metrics collector
metrics = MetricsCollector()

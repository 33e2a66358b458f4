from typing import Optional, Tuple
import threading
import psutil
import structlog

from aurakai.domain.models.context import SecuritySnapshot
from aurakai.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


class SecurityMonitor:
    """Samples host resources into SecuritySnapshots.

    Battery readings come from psutil where the platform exposes them; hosts
    without a battery report a full, cool, charging one.
    """

    def __init__(self):
        self._errors = 0
        self._lock = threading.Lock()
        self.last_snapshot: Optional[SecuritySnapshot] = None
        # First cpu_percent(interval=None) call only primes the counters
        psutil.cpu_percent(interval=None)

    def record_error(self, count: int = 1) -> None:
        with self._lock:
            self._errors += count

    def reset_errors(self) -> None:
        with self._lock:
            self._errors = 0

    @property
    def recent_errors(self) -> int:
        return self._errors

    def snapshot(self) -> SecuritySnapshot:
        """Current resource usage and error count"""

        battery_temp = self._battery_temperature()
        battery_level, is_charging = self._battery_state()

        snapshot = SecuritySnapshot(
            ram_usage=psutil.virtual_memory().percent,
            cpu_usage=psutil.cpu_percent(interval=None),
            battery_temp=battery_temp,
            battery_level=battery_level,
            is_charging=is_charging,
            recent_errors=self._errors
        )
        self.last_snapshot = snapshot
        return snapshot

    async def tick(self) -> None:
        """One monitoring pass: publish gauges and log concerns"""

        snapshot = self.snapshot()
        metrics.set_gauge("security.ram_usage", snapshot.ram_usage)
        metrics.set_gauge("security.cpu_usage", snapshot.cpu_usage)
        metrics.set_gauge("security.battery_temp", snapshot.battery_temp)
        metrics.set_gauge("security.recent_errors", snapshot.recent_errors)

        if snapshot.has_concerns:
            logger.warning("Security concerns detected", concerns=snapshot.describe_concerns())

    @staticmethod
    def _battery_state() -> Tuple[Optional[int], bool]:
        if not hasattr(psutil, "sensors_battery"):
            return None, True
        battery = psutil.sensors_battery()
        if battery is None:
            return None, True
        return int(battery.percent), bool(battery.power_plugged)

    @staticmethod
    def _battery_temperature() -> float:
        if not hasattr(psutil, "sensors_temperatures"):
            return 0.0
        try:
            readings = psutil.sensors_temperatures()
        except (OSError, RuntimeError) as e:
            logger.debug("Temperature sensors unavailable", error=str(e))
            return 0.0

        for name in ("battery", "BAT0", "acpitz"):
            entries = readings.get(name)
            if entries:
                return float(entries[0].current)
        return 0.0

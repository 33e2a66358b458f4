from typing import Dict, Any, Optional
from pathlib import Path
import asyncio
import json
import structlog

logger = structlog.get_logger(__name__)


class InMemoryDurableStore:
    """Key/value store kept in process memory"""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.writes = 0
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self.values.get(key)

    async def put(self, key: str, value: str) -> None:
        async with self._lock:
            self.values[key] = value
            self.writes += 1


class JsonFileDurableStore:
    """Key/value store persisted as a single JSON object on disk.

    Writes go to a temporary sibling file that then replaces the target, so a
    reader never sees a half-written document.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            return data.get(key)

    async def put(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if key not in data:
                return False
            del data[key]
            await asyncio.to_thread(self._write, data)
            return True

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Durable store file is corrupt; starting empty", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f)
        tmp_path.replace(self.path)

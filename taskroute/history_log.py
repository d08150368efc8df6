"""
History log of routed requests.

Writes one JSON line per TaskProcessingResult, with size-based rotation:

    history.jsonl      current file
    history.jsonl.1    most recent rotated file
    history.jsonl.N    oldest kept file (N = backup_count)

Usage:
    sink = JsonlHistorySink(HistoryConfig(enabled=True))
    router = HybridRouter(sink=sink)
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .config import HistoryConfig
from .types import TaskProcessingResult

logger = logging.getLogger(__name__)

# Long inputs and outputs are cut to keep lines small
MAX_FIELD_CHARS = 500


@runtime_checkable
class ResultSink(Protocol):
    """Receives every finished result. emit() runs in a worker thread, so it must be thread-safe."""

    def emit(self, result: TaskProcessingResult) -> None: ...


class JsonlHistorySink:
    """Appends results to a JSONL file and rotates it by size."""

    def __init__(self, config: HistoryConfig | None = None):
        self.config = config or HistoryConfig(enabled=True)
        self._lock = threading.Lock()
        self._path = Path(self.config.path).expanduser()
        self._entries_written = 0

        if self.config.enabled:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def _rotated(self, index: int) -> Path:
        return self._path.with_name(f"{self._path.name}.{index}")

    def _check_rotation(self) -> None:
        """Rotate when the current file has reached max_bytes. Caller holds the lock."""
        if not self._path.exists() or self._path.stat().st_size < self.config.max_bytes:
            return

        if self.config.backup_count <= 0:
            self._path.unlink()
        else:
            oldest = self._rotated(self.config.backup_count)
            if oldest.exists():
                oldest.unlink()
            for i in range(self.config.backup_count - 1, 0, -1):
                if self._rotated(i).exists():
                    self._rotated(i).rename(self._rotated(i + 1))
            self._path.rename(self._rotated(1))

        logger.info(f"Rotated history log: {self._path}")

    def emit(self, result: TaskProcessingResult) -> None:
        if not self.config.enabled:
            return

        entry = result.to_dict()
        entry["input"] = entry["input"][:MAX_FIELD_CHARS]
        entry["output"] = entry["output"][:MAX_FIELD_CHARS]
        params = entry["classification"]["parameters"]
        if "text" in params:
            params["text"] = params["text"][:MAX_FIELD_CHARS]

        line = json.dumps(entry, ensure_ascii=False) + "\n"
        with self._lock:
            self._check_rotation()
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(line)
            self._entries_written += 1

    def load_entries(self) -> list[dict[str, Any]]:
        """Read back the current file, skipping malformed lines."""
        entries: list[dict[str, Any]] = []
        if not self._path.exists():
            return entries

        with open(self._path, encoding="utf-8") as f:
            for line in f:
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed history line: {e}")
        return entries

    def get_statistics(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "enabled": self.config.enabled,
            "path": str(self._path),
            "entries_written": self._entries_written,
        }
        if self._path.exists():
            stats["size_bytes"] = self._path.stat().st_size
        return stats


__all__ = ["JsonlHistorySink", "MAX_FIELD_CHARS", "ResultSink"]

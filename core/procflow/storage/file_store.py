"""
File-backed storage: write-through JSON persistence for engine records.

Storage layout::

    {base_path}/
      runs/{run_id}.json
      validations/{validation_id}.json
      events/{event_id}.json
      notifications/{notification_id}.json
      tasks/{task_id}.json
      sub_processes/{sub_run_id}.json
      requests/{request_id}.json
      logs/{run_id}.jsonl        # execution log, one entry per line

Snapshots are written with temp file + rename for crash safety. The
execution log is appended line by line and never rewritten.
"""

import asyncio
import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from procflow.schemas.run import ExecutionLogEntry
from procflow.storage.backend import COLLECTIONS, EVENTS, InMemoryStorage
from procflow.utils.io import atomic_write

logger = logging.getLogger(__name__)


class FileStorage(InMemoryStorage):
    """In-memory storage mirrored to disk; state is reloaded on construction."""

    def __init__(self, base_path: str | Path):
        super().__init__()
        self.base_path = Path(base_path)
        self._load()

    def _validate_key(self, key: str) -> None:
        """
        Reject keys that could escape the storage directory.

        Raises:
            ValueError: If key is empty or contains path separators or traversal
        """
        if not key or key.strip() == "":
            raise ValueError("Key cannot be empty")
        if "/" in key or "\\" in key:
            raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")
        if ".." in key or key.startswith("."):
            raise ValueError(f"Invalid key format: path traversal detected in '{key}'")
        if "\x00" in key:
            raise ValueError("Invalid key format: null bytes not allowed")

    def _record_path(self, collection: str, key: str) -> Path:
        self._validate_key(key)
        return self.base_path / collection / f"{key}.json"

    def _log_path(self, run_id: str) -> Path:
        self._validate_key(run_id)
        return self.base_path / "logs" / f"{run_id}.jsonl"

    # === LOADING ===

    def _load(self) -> None:
        loaded = 0
        for collection, model in COLLECTIONS.items():
            directory = self.base_path / collection
            if not directory.exists():
                continue
            for path in sorted(directory.glob("*.json")):
                try:
                    record = model.model_validate_json(path.read_text(encoding="utf-8"))
                except (OSError, ValidationError) as e:
                    logger.warning(f"Skipping unreadable record {path}: {e}")
                    continue
                self._records[collection][path.stem] = record
                loaded += 1
                if collection == EVENTS:
                    self._event_sequence = max(self._event_sequence, record.sequence)

        logs_dir = self.base_path / "logs"
        if logs_dir.exists():
            for path in sorted(logs_dir.glob("*.jsonl")):
                entries = self._logs[path.stem]
                for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
                    if not line.strip():
                        continue
                    try:
                        entries.append(ExecutionLogEntry.model_validate_json(line))
                    except ValidationError as e:
                        # A torn final line after a crash is expected; keep what parsed
                        logger.warning(f"Skipping corrupt log line {path}:{line_no}: {e}")

        if loaded:
            logger.debug(f"Loaded {loaded} records from {self.base_path}")

    # === WRITE-THROUGH HOOKS ===

    async def _persist(self, collection: str, record: BaseModel) -> None:
        path = self._record_path(collection, record.id)
        payload = record.model_dump_json(indent=2)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            with atomic_write(path) as f:
                f.write(payload)

        await asyncio.to_thread(_write)

    async def _persist_log(self, entry: ExecutionLogEntry) -> None:
        path = self._log_path(entry.run_id)
        line = entry.model_dump_json() + "\n"

        def _append():
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)

        await asyncio.to_thread(_append)

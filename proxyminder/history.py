"""
Durable request history.

The history is a single JSON blob holding the most recent request events
plus running token and cost totals. Every mutation is a locked
read-modify-write of the whole blob, so the tailer thread and API handlers
can append concurrently without losing updates. A missing or corrupt blob
reads as an empty history.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .events import HistoryRecord, RequestEvent
from .exceptions import PersistError
from .pricing import estimate_cost

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 500


class JsonFileBlob:
    """Read and atomically rewrite a single text file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, data: str):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


class HistoryStore:
    """Bounded, deduplicated request history backed by a blob."""

    def __init__(self, blob: JsonFileBlob, limit: int = DEFAULT_HISTORY_LIMIT):
        self._blob = blob
        self._limit = limit
        self._lock = threading.Lock()

    def load(self) -> HistoryRecord:
        """Read the current history. Never raises."""
        try:
            raw = self._blob.read()
            if not raw:
                return HistoryRecord()
            return HistoryRecord.from_dict(json.loads(raw))
        except Exception as e:
            logger.warning(f"Could not read request history, starting empty: {e}")
            return HistoryRecord()

    def append(self, event: RequestEvent) -> HistoryRecord:
        """Add an event unless one with the same (timestamp, path) exists."""
        record, _ = self._append(event)
        return record

    def ingest(self, event: RequestEvent) -> bool:
        """Add an event, returning True only if it was not a duplicate."""
        _, added = self._append(event)
        return added

    def clear(self):
        """Drop all events and totals."""
        with self._lock:
            self._save(HistoryRecord())

    def set_totals(self, tokens_in: int, tokens_out: int, cost: float) -> HistoryRecord:
        """Overwrite the running totals, keeping the stored events."""
        with self._lock:
            record = self.load()
            record.total_tokens_in = tokens_in
            record.total_tokens_out = tokens_out
            record.total_cost_estimate = cost
            self._save(record)
            return record

    def _append(self, event: RequestEvent) -> tuple[HistoryRecord, bool]:
        with self._lock:
            record = self.load()

            key = event.dedup_key
            if any(e.dedup_key == key for e in record.events):
                return record, False

            tokens_in = event.tokens_in or 0
            tokens_out = event.tokens_out or 0
            record.events.append(event)
            record.total_tokens_in += tokens_in
            record.total_tokens_out += tokens_out
            record.total_cost_estimate += estimate_cost(event.model, tokens_in, tokens_out)

            if len(record.events) > self._limit:
                record.events = record.events[-self._limit:]

            self._save(record)
            return record, True

    def _save(self, record: HistoryRecord):
        try:
            self._blob.write(json.dumps(record.to_dict(), indent=2))
        except (OSError, TypeError, ValueError) as e:
            raise PersistError(f"Failed to save request history: {e}") from e

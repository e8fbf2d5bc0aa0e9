"""
APPEND-ONLY JSONL TABLE

Storage model for every dispatch record type:
1. One JSON Lines file per table
2. Append-only: upserts append the full record, deletes append a tombstone
3. Latest line for an id wins on replay
4. In-memory index rebuilt once on open
5. Memory-only when no path is given (tests, dashboards without disk)
"""

import json
import logging
import os
import threading
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_TOMBSTONE_KEY = "__deleted__"


class JsonlTable:
    """Thread-safe keyed table backed by an append-only JSONL file."""

    def __init__(self, name: str, path: Optional[str] = None, key: str = "id"):
        self.name = name
        self.path = path
        self.key = key
        self._lock = threading.Lock()
        self._rows: Dict[str, Dict] = {}

        if path:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._replay()

    # ──────────────────────────────────────────────
    # INTERNALS
    # ──────────────────────────────────────────────

    def _replay(self) -> None:
        if not os.path.exists(self.path):
            return

        with open(self.path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt line {line_no} in {self.path}")
                    continue

                row_id = row.get(self.key)
                if row_id is None:
                    continue
                if row.get(_TOMBSTONE_KEY):
                    self._rows.pop(row_id, None)
                else:
                    self._rows[row_id] = row

        logger.info(f"Loaded {len(self._rows)} rows into table '{self.name}'")

    def _append(self, row: Dict) -> None:
        if not self.path:
            return
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(row) + "\n")

    # ──────────────────────────────────────────────
    # PUBLIC API
    # ──────────────────────────────────────────────

    def upsert(self, row: Dict) -> Dict:
        row_id = row.get(self.key)
        if row_id is None:
            raise ValueError(f"Row for table '{self.name}' is missing key '{self.key}'")

        stored = dict(row)
        with self._lock:
            self._rows[row_id] = stored
            self._append(stored)
        return dict(stored)

    def get(self, row_id: str) -> Optional[Dict]:
        with self._lock:
            row = self._rows.get(row_id)
            return dict(row) if row is not None else None

    def delete(self, row_id: str) -> bool:
        with self._lock:
            if row_id not in self._rows:
                return False
            del self._rows[row_id]
            self._append({self.key: row_id, _TOMBSTONE_KEY: True})
            return True

    def all(self) -> List[Dict]:
        with self._lock:
            return [dict(r) for r in self._rows.values()]

    def find(self, predicate: Callable[[Dict], bool]) -> List[Dict]:
        return [r for r in self.all() if predicate(r)]

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def clear(self) -> None:
        """Drop every row. Use for testing or a full reset only."""
        with self._lock:
            for row_id in list(self._rows):
                self._append({self.key: row_id, _TOMBSTONE_KEY: True})
            self._rows.clear()

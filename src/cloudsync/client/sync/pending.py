"""Durable queue of operations deferred while sync is not possible.

This module provides:
- PendingOperationsManager: file-backed list of PendingOperation values

Persistence:
    The whole list is serialized to a JSON file after every change. The
    file is replaced atomically (write to a sibling temp file, then
    rename), so a crash leaves either the old or the new list on disk.
    A missing file means an empty queue; a corrupt file is logged and
    treated as empty.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from cloudsync.client.sync.types import OperationKind, PendingOperation

logger = logging.getLogger(__name__)


class PendingOperationsManager:
    """Append-only queue of deletions, flushed when sync conditions return."""

    def __init__(self, path: Path) -> None:
        """Load the queue from disk.

        Args:
            path: JSON file holding the queue.
        """
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._operations: list[PendingOperation] = []
        logger.debug("Pending operations file at %s", self._path)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def operations(self) -> list[PendingOperation]:
        with self._lock:
            return [PendingOperation(op.kind, list(op.record_ids)) for op in self._operations]

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)

    def add_pending_deletions(self, record_ids: list[str]) -> None:
        """Queue a deletion and persist it before returning."""
        if not record_ids:
            return
        with self._lock:
            self._operations.append(PendingOperation.deletion(record_ids))
            self._save()
        logger.debug("Added pending deletion for records: %s", ", ".join(record_ids))

    def get_pending_deletions(self) -> list[str]:
        """All queued deletion ids, in queue order, each id once."""
        with self._lock:
            seen: dict[str, None] = {}
            for op in self._operations:
                if op.kind == OperationKind.DELETION:
                    for record_id in op.record_ids:
                        seen.setdefault(record_id, None)
            return list(seen)

    def remove_pending_deletions(self, record_ids: list[str]) -> None:
        """Drop ids confirmed deleted; operations left empty are removed."""
        if not record_ids:
            return
        confirmed = set(record_ids)
        with self._lock:
            remaining: list[PendingOperation] = []
            for op in self._operations:
                if op.kind == OperationKind.DELETION:
                    op.record_ids = [i for i in op.record_ids if i not in confirmed]
                    if not op.record_ids:
                        continue
                remaining.append(op)
            self._operations = remaining
            self._save()
        logger.debug("Removed pending deletions for records: %s", ", ".join(record_ids))

    def clear(self) -> int:
        """Remove all queued operations.

        Returns:
            Number of operations removed.
        """
        with self._lock:
            count = len(self._operations)
            self._operations = []
            self._save()
        logger.info("Cleared %d pending operations", count)
        return count

    def _save(self) -> None:
        data = json.dumps([op.to_dict() for op in self._operations], indent=2)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(data, encoding="utf-8")
        os.replace(tmp_path, self._path)

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._operations = [PendingOperation.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load pending operations from %s: %s", self._path, e)
            self._operations = []
            return
        if self._operations:
            logger.info("Loaded %d pending operations", len(self._operations))

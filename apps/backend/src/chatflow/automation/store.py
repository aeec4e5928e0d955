"""File based automation storage, one JSON document per automation."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from .graph import AutomationGraph
from .schema import AutomationRecord

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,64}")


class AutomationStore:
    """Stores automation records as ``<id>.json`` files under ``base_dir``.

    Every save goes through ``AutomationGraph`` so the stored ``workflow`` and
    ``connections`` are always consistent with each other. Writes to one
    automation are serialized by a lock of its own and land atomically, so a
    reader never sees a half-written record.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def save(self, record: AutomationRecord) -> AutomationRecord:
        """Normalize and persist a record. Returns the stored version."""
        graph = AutomationGraph.from_record(record)
        stored = graph.to_record(record)

        with self._lock_for(record.id):
            existing = self._read(record.id)
            if existing is not None:
                stored = stored.model_copy(update={"created_at": existing.created_at})
            self._write(stored)
        logger.info("Saved automation %s (%d steps)", stored.id, len(stored.workflow))
        return stored

    def save_graph(self, record: AutomationRecord, graph: AutomationGraph) -> AutomationRecord:
        """Persist ``graph`` as the workflow of ``record``."""
        return self.save(graph.to_record(record))

    def load(self, automation_id: str) -> Optional[AutomationRecord]:
        return self._read(automation_id)

    def load_graph(self, automation_id: str) -> Optional[tuple[AutomationRecord, AutomationGraph]]:
        record = self.load(automation_id)
        if record is None:
            return None
        return record, AutomationGraph.from_record(record)

    def list_all(self) -> list[AutomationRecord]:
        """All records, most recently updated first."""
        records = []
        for filepath in self.base_dir.glob("*.json"):
            records.append(AutomationRecord.model_validate(json.loads(filepath.read_text())))
        return sorted(records, key=lambda r: r.updated_at, reverse=True)

    def set_status(self, automation_id: str, status: str) -> Optional[AutomationRecord]:
        record = self.load(automation_id)
        if record is None:
            return None
        return self.save(record.model_copy(update={"status": status, "updated_at": datetime.now()}))

    def delete(self, automation_id: str) -> bool:
        """Delete an automation. Returns True if it existed."""
        with self._lock_for(automation_id):
            path = self._path(automation_id)
            if not path.exists():
                return False
            path.unlink()
        with self._locks_guard:
            self._locks.pop(automation_id, None)
        return True

    def _lock_for(self, automation_id: str) -> threading.Lock:
        self._path(automation_id)
        with self._locks_guard:
            return self._locks.setdefault(automation_id, threading.Lock())

    def _path(self, automation_id: str) -> Path:
        if not _ID_RE.fullmatch(automation_id):
            raise ValueError(f"Invalid automation id: {automation_id!r}")
        return self.base_dir / f"{automation_id}.json"

    def _read(self, automation_id: str) -> Optional[AutomationRecord]:
        path = self._path(automation_id)
        if not path.exists():
            return None
        return AutomationRecord.model_validate(json.loads(path.read_text()))

    def _write(self, record: AutomationRecord) -> None:
        # Temp files start with a dot so list_all's *.json glob skips them
        fd, tmp_name = tempfile.mkstemp(prefix=f".{record.id}.", suffix=".tmp", dir=self.base_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(record.model_dump_json(indent=2, by_alias=True))
            os.replace(tmp_name, self._path(record.id))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

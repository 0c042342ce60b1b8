"""Sync status shared between the worker thread and any number of readers."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SyncStatus:
    connected: bool = False
    last_sync_time: Optional[datetime] = None
    last_error: str = ""
    route_count: int = 0
    paused: bool = False
    has_permission: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_sync_time"] = self.last_sync_time.isoformat() if self.last_sync_time else None
        return data


_FIELDS = frozenset(f.name for f in fields(SyncStatus))


class StatusReporter:
    """Holds the current SyncStatus behind a lock that never spans file I/O."""

    def __init__(self, initial: Optional[SyncStatus] = None):
        self._lock = threading.Lock()
        self._status = initial or SyncStatus()

    def snapshot(self) -> SyncStatus:
        with self._lock:
            return self._status

    def update(self, **changes: Any) -> SyncStatus:
        unknown = set(changes) - _FIELDS
        if unknown:
            raise TypeError(f"Unknown status field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            self._status = replace(self._status, **changes)
            return self._status

    def set_paused(self, paused: bool) -> None:
        self.update(paused=paused)

    def toggle_paused(self) -> bool:
        with self._lock:
            self._status = replace(self._status, paused=not self._status.paused)
            return self._status.paused

"""Hosts file backups.

A full copy of the hosts file is written to ``hosts_<YYYYmmdd_HHMMSS>.bak``
before every mutation. Two snapshots taken within the same second share a
name, so the later one replaces the earlier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from devproxy_agent.errors import BackupError, FileIOError
from devproxy_agent.hosts import ENCODING, ENCODING_ERRORS, HostsFile

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "hosts_"
BACKUP_SUFFIX = ".bak"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
BACKUP_NAME_RE = re.compile(r"^hosts_[\w.-]+\.bak$")


@dataclass(frozen=True)
class BackupInfo:
    """A backup file on disk."""

    name: str
    path: Path
    size: int
    modified: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "size": self.size,
            "modified": self.modified.isoformat(),
        }


class BackupManager:
    def __init__(self, backup_dir: Path, now: Callable[[], datetime] = datetime.now):
        self.backup_dir = Path(backup_dir)
        self._now = now

    def snapshot(self, content: str) -> Path:
        """Write ``content`` to a new timestamped backup and return its path."""
        name = f"{BACKUP_PREFIX}{self._now().strftime(TIMESTAMP_FORMAT)}{BACKUP_SUFFIX}"
        path = self.backup_dir / name
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content.encode(ENCODING, ENCODING_ERRORS))
        except OSError as e:
            raise BackupError(f"failed to write backup {path}: {e}") from e
        logger.debug(f"Created backup {path}")
        return path

    def list(self) -> List[BackupInfo]:
        """Backups sorted by modification time, newest first."""
        if not self.backup_dir.is_dir():
            return []

        backups: List[BackupInfo] = []
        try:
            candidates = list(self.backup_dir.iterdir())
        except OSError as e:
            raise BackupError(f"failed to list backups in {self.backup_dir}: {e}") from e

        for entry in candidates:
            if not BACKUP_NAME_RE.match(entry.name):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except OSError:
                # Vanished between listing and stat.
                continue
            backups.append(
                BackupInfo(
                    name=entry.name,
                    path=entry,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime),
                )
            )

        backups.sort(key=lambda b: b.modified, reverse=True)
        return backups

    def prune(self, keep: int) -> int:
        """Delete all but the ``keep`` newest backups. Returns how many were removed."""
        keep = max(0, keep)
        removed = 0
        for backup in self.list()[keep:]:
            try:
                backup.path.unlink()
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete old backup {backup.name}: {e}")
        if removed:
            logger.debug(f"Pruned {removed} old backup(s), keeping {keep}")
        return removed

    def resolve(self, name: str) -> Path:
        """Map a bare backup file name onto a path inside the backup directory."""
        if Path(name).name != name or not BACKUP_NAME_RE.match(name):
            raise BackupError(f"invalid backup name: {name!r}")
        path = self.backup_dir / name
        if not path.is_file():
            raise BackupError(f"backup not found: {name}")
        return path

    def restore(self, backup_path: Path, hosts_file: HostsFile) -> Optional[Path]:
        """Overwrite the hosts file with a backup, verbatim.

        The current hosts file is snapshotted first so a restore can itself be
        undone. Returns the path of that pre-restore snapshot.
        """
        try:
            data = Path(backup_path).read_bytes()
        except OSError as e:
            raise BackupError(f"failed to read backup {backup_path}: {e}") from e

        with hosts_file.lock:
            try:
                current = hosts_file.read_content()
            except FileIOError as e:
                # Nothing to preserve if the hosts file itself is gone.
                if hosts_file.path.exists():
                    raise
                logger.warning(f"No current hosts file to back up before restore: {e}")
                current = None
            undo_path = self.snapshot(current) if current is not None else None
            hosts_file.write_content(data)

        logger.info(f"Restored {hosts_file.path} from {Path(backup_path).name}")
        return undo_path

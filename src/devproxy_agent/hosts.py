"""Hosts file store.

Owns the marker-delimited section of the system hosts file that the agent
writes. The section is always replaced whole:

    <user content, untouched>

    # DevProxy managed entries - START
    127.0.0.1 app.test
    127.0.0.1 api.test
    # DevProxy managed entries - END

Writes go to a temp file in the same directory and are committed with a single
``os.replace``. If anything fails before that rename the hosts file is left
exactly as it was.

Only in-process writers are serialized (``HostsFile.lock``). Other programs
editing the hosts file at the same moment are not guarded against.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from devproxy_agent.errors import FileIOError, HostsPermissionError

if TYPE_CHECKING:
    from devproxy_agent.backups import BackupManager

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT = "DevProxy"
TEMP_SUFFIX = ".devproxy.tmp"
ENCODING = "utf-8"
# Undecodable bytes survive a read/rewrite cycle unchanged.
ENCODING_ERRORS = "surrogateescape"


def default_hosts_path() -> Path:
    """Return the platform-specific hosts file path."""
    if platform.system().lower() == "windows":
        sys_root = os.environ.get("SystemRoot") or r"C:\Windows"
        return Path(sys_root) / "System32" / "drivers" / "etc" / "hosts"
    return Path("/etc/hosts")


def _permission_hint() -> str:
    if platform.system().lower() == "windows":
        return "run the agent as Administrator"
    return "run the agent with sudo"


def _io_error(action: str, path: Path, e: OSError) -> FileIOError:
    if isinstance(e, PermissionError):
        return HostsPermissionError(f"permission denied to {action} {path}: {_permission_hint()}")
    return FileIOError(f"failed to {action} {path}: {e}")


class HostsFile:
    """Reads and rewrites the managed section of one hosts file."""

    def __init__(self, path: Path, product: str = DEFAULT_PRODUCT):
        self.path = Path(path)
        self.start_marker = f"# {product} managed entries - START"
        self.end_marker = f"# {product} managed entries - END"
        # Reentrant so restore can snapshot and write under one acquisition.
        self.lock = threading.RLock()

    @property
    def temp_path(self) -> Path:
        return self.path.with_name(self.path.name + TEMP_SUFFIX)

    # -------------------------------------------------------------------------
    # Raw access
    # -------------------------------------------------------------------------

    def read_content(self) -> str:
        try:
            return self.path.read_text(encoding=ENCODING, errors=ENCODING_ERRORS)
        except OSError as e:
            raise _io_error("read", self.path, e) from e

    def write_content(self, data: bytes) -> None:
        """Atomically replace the whole file with ``data``."""
        tmp_path = self.temp_path
        with self.lock:
            try:
                with open(tmp_path, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                if self.path.exists():
                    shutil.copymode(self.path, tmp_path)
            except OSError as e:
                self._discard_temp()
                raise _io_error("write temp file for", self.path, e) from e

            try:
                os.replace(tmp_path, self.path)
            except OSError as e:
                self._discard_temp()
                raise _io_error("rename temp file over", self.path, e) from e

    def _discard_temp(self) -> None:
        try:
            self.temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temp file {self.temp_path}: {e}")

    def check_permissions(self) -> None:
        """Raise HostsPermissionError unless the file can be opened read-write."""
        try:
            with open(self.path, "r+b"):
                pass
        except OSError as e:
            raise _io_error("open", self.path, e) from e

    # -------------------------------------------------------------------------
    # Managed section
    # -------------------------------------------------------------------------

    def _section_bounds(self, lines: List[str]) -> Optional[Tuple[int, int]]:
        """Index of the first START and of the first END after it.

        An unterminated START runs to the end of the file.
        """
        start: Optional[int] = None
        for i, line in enumerate(lines):
            trimmed = line.strip()
            if start is None:
                if trimmed == self.start_marker:
                    start = i
            elif trimmed == self.end_marker:
                return start, i
        if start is None:
            return None
        return start, len(lines) - 1

    def read_managed_entries(self) -> List[str]:
        with self.lock:
            lines = self.read_content().splitlines()

        bounds = self._section_bounds(lines)
        if bounds is None:
            return []
        start, end = bounds
        entries = []
        for line in lines[start + 1 : end + 1]:
            trimmed = line.strip()
            if trimmed == self.end_marker:
                break
            if trimmed and not trimmed.startswith("#"):
                entries.append(trimmed)
        return entries

    def render(self, content: str, entries: Iterable[str]) -> str:
        """Return ``content`` with its managed section replaced by ``entries``."""
        lines = content.splitlines()
        bounds = self._section_bounds(lines)
        if bounds is not None:
            start, end = bounds
            lines = lines[:start] + lines[end + 1 :]

        while lines and not lines[-1].strip():
            lines.pop()

        entries = [e for e in entries if e.strip()]
        if entries:
            lines.append("")
            lines.append(self.start_marker)
            lines.extend(entries)
            lines.append(self.end_marker)

        return "\n".join(lines) + "\n"

    def apply_entries(
        self, entries: Iterable[str], backups: Optional["BackupManager"] = None
    ) -> str:
        """Replace the managed section with ``entries`` and return the new content.

        With ``backups`` set, the current file is snapshotted first under the
        same lock. A BackupError aborts before anything is written.
        """
        with self.lock:
            current = self.read_content()
            new_content = self.render(current, entries)
            if backups is not None:
                backups.snapshot(current)
            self.write_content(new_content.encode(ENCODING, ENCODING_ERRORS))
        logger.debug(f"Rewrote managed section of {self.path}")
        return new_content

"""Error taxonomy for devproxy-agent.

Every fault raised below the sync loop maps onto one of these types. The loop
records them in the sync status; none of them escape the worker thread.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all agent errors."""


class FetchError(AgentError):
    """Route source unreachable, returned non-2xx, or sent a malformed payload."""


class FileIOError(AgentError):
    """Read, write or rename failure on the hosts file or its temp file."""


class HostsPermissionError(FileIOError, PermissionError):
    """The hosts file cannot be opened for read-write."""


class BackupError(AgentError):
    """Backup directory or snapshot could not be created, read or resolved."""


class ConfigError(AgentError):
    """Config file or environment override is invalid."""

"""Hosts reconciliation loop.

Every cycle:
  1) Skip entirely while paused.
  2) Fetch routes from the DevProxy API. On failure record the error and keep
     the hosts file as is, so an outage never erases written entries.
  3) Build the desired entries: one ``<target_ip> <domain>`` per enabled route
     with a domain, deduplicated and sorted.
  4) Compare the fingerprint of those entries with the last applied one. Only
     a change causes a backup plus a rewrite of the managed section.

The worker thread is the only consumer of the command queue and the only
writer of the fingerprint. Control calls (pause, resume, force sync, status)
are safe from any thread and never wait on file I/O.
"""

from __future__ import annotations

import hashlib
import logging
import queue
import threading
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from devproxy_agent.backups import BackupManager
from devproxy_agent.config import AgentConfig, ConfigStore
from devproxy_agent.errors import BackupError, FetchError, FileIOError
from devproxy_agent.hosts import HostsFile
from devproxy_agent.routes import Route, RouteSource
from devproxy_agent.status import StatusReporter, SyncStatus

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 1.0


class SyncState(Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class Command(Enum):
    """Messages consumed by the worker. TICK stands for an expired wait."""

    TICK = "tick"
    SYNC = "sync"
    STOP = "stop"


def build_entries(routes: Iterable[Route], target_ip: str) -> List[str]:
    """Desired hosts entries for the enabled routes, sorted."""
    domains = {r.domain.strip() for r in routes if r.enabled and r.domain.strip()}
    return sorted(f"{target_ip} {domain}" for domain in domains)


def fingerprint(entries: List[str]) -> str:
    """Fingerprint of an entry list. The empty list maps to ``""``."""
    if not entries:
        return ""
    return hashlib.sha256("\n".join(entries).encode("utf-8")).hexdigest()


class HostsSyncer:
    def __init__(
        self,
        *,
        config_store: ConfigStore,
        hosts_file: HostsFile,
        backups: BackupManager,
        route_source: RouteSource,
        status: Optional[StatusReporter] = None,
    ):
        self.config_store = config_store
        self.hosts_file = hosts_file
        self.backups = backups
        self.route_source = route_source
        self.status = status or StatusReporter()

        # Starts empty so the first cycle with entries always writes.
        self._fingerprint = ""
        self._applied_config = config_store.get()

        self._state = SyncState.IDLE
        self._state_lock = threading.Lock()

        self._commands: "queue.Queue[Command]" = queue.Queue()
        self._pending_lock = threading.Lock()
        self._sync_pending = False
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SyncState) -> None:
        with self._state_lock:
            self._state = state

    def sync_once(self) -> SyncStatus:
        """Run one reconciliation cycle and return the resulting status."""
        self._set_state(SyncState.SYNCING)
        try:
            self._reconcile()
        except Exception as e:
            logger.error(f"Unexpected error during sync: {e}", exc_info=True)
            self.status.update(last_error=f"unexpected error: {e}")
        finally:
            self._set_state(SyncState.IDLE)
        return self.status.snapshot()

    def _apply_config(self, config: AgentConfig) -> None:
        """Re-point the components whose settings changed since the last cycle."""
        previous = self._applied_config
        if config == previous:
            return
        self._applied_config = config

        if config.hosts_path != previous.hosts_path:
            self.hosts_file = HostsFile(config.resolved_hosts_path())
            # The new file has never been written by this worker.
            self._fingerprint = ""
            logger.info(f"Hosts file changed to {self.hosts_file.path}")
        if config.backup_dir != previous.backup_dir:
            self.backups = BackupManager(
                config.resolved_backup_dir(self.config_store.config_dir)
            )
            logger.info(f"Backup directory changed to {self.backups.backup_dir}")
        if config.fetch_timeout_seconds != previous.fetch_timeout_seconds:
            self.route_source.set_timeout(config.fetch_timeout_seconds)
            logger.info(f"Fetch timeout changed to {config.fetch_timeout_seconds}s")

    def _reconcile(self) -> None:
        config = self.config_store.get()
        self._apply_config(config)

        if self.status.snapshot().paused:
            logger.debug("Sync paused, skipping cycle")
            return

        try:
            routes = self.route_source.fetch(config.api_url)
        except FetchError as e:
            logger.warning(f"DevProxy API unreachable: {e}")
            self.status.update(connected=False, last_error=str(e))
            return

        entries = build_entries(routes, config.target_ip)
        entries_key = fingerprint(entries)

        if entries_key == self._fingerprint:
            logger.debug(f"No route changes ({len(entries)} entries)")
            self.status.update(
                connected=True,
                last_sync_time=datetime.now(),
                last_error="",
                route_count=len(entries),
            )
            return

        try:
            self.hosts_file.apply_entries(entries, backups=self.backups)
        except BackupError as e:
            logger.error(f"Backup failed, hosts file left unchanged: {e}")
            self.status.update(
                connected=True,
                has_permission=False,
                last_error=f"backup failed: {e}",
            )
            return
        except FileIOError as e:
            # Covers HostsPermissionError. The fingerprint stays unchanged, so
            # the next cycle retries.
            logger.error(f"Failed to update hosts file: {e}")
            self.status.update(
                connected=True,
                has_permission=False,
                last_error=f"hosts update failed: {e}",
            )
            return

        self._fingerprint = entries_key

        try:
            self.backups.prune(config.max_backups)
        except BackupError as e:
            logger.warning(f"Failed to prune backups: {e}")

        self.status.update(
            connected=True,
            has_permission=True,
            last_sync_time=datetime.now(),
            last_error="",
            route_count=len(entries),
        )
        logger.info(f"Synced {len(entries)} entries to hosts file")

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _interval(self) -> float:
        return max(MIN_INTERVAL_SECONDS, float(self.config_store.get().sync_interval_seconds))

    def _next_command(self) -> Command:
        try:
            return self._commands.get(timeout=self._interval())
        except queue.Empty:
            return Command.TICK

    def handle(self, command: Command) -> bool:
        """Apply one command. Returns False once the worker should exit."""
        if command is Command.STOP or self._stopping.is_set():
            return False
        if command is Command.SYNC:
            # Cleared before the cycle so a request made during it queues again.
            with self._pending_lock:
                self._sync_pending = False
        self.sync_once()
        return True

    def _run(self) -> None:
        logger.info(f"Sync loop started for {self.hosts_file.path}")
        self.sync_once()
        while self.handle(self._next_command()):
            pass
        logger.info("Sync loop stopped")

    def _check_permissions(self) -> None:
        try:
            self.hosts_file.check_permissions()
        except FileIOError as e:
            logger.warning(f"Warning: {e}")
            self.status.update(has_permission=False, last_error=str(e))
        else:
            self.status.update(has_permission=True)

    # -------------------------------------------------------------------------
    # Control surface
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._check_permissions()
        self._stopping.clear()
        self._commands = queue.Queue()
        with self._pending_lock:
            self._sync_pending = False
        self._thread = threading.Thread(target=self._run, name="hosts-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the worker and wait for it. An in-flight cycle completes first."""
        self._stopping.set()
        self._commands.put_nowait(Command.STOP)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Sync worker did not stop within timeout")
                return
        self._thread = None

    def pause(self) -> None:
        self.status.set_paused(True)
        logger.info("Sync paused")

    def resume(self) -> None:
        self.status.set_paused(False)
        logger.info("Sync resumed")

    def toggle_pause(self) -> bool:
        paused = self.status.toggle_paused()
        logger.info("Sync paused" if paused else "Sync resumed")
        return paused

    def force_sync_now(self) -> bool:
        """Queue an immediate cycle. Returns False if one is already pending."""
        with self._pending_lock:
            if self._sync_pending:
                return False
            self._sync_pending = True
        self._commands.put_nowait(Command.SYNC)
        return True

    def get_status(self) -> SyncStatus:
        return self.status.snapshot()

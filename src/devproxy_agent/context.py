"""Process-wide wiring of the agent components.

One AgentContext is built at startup and handed to whatever drives the agent
(the CLI here, or an embedding UI/API layer). Nothing is kept in module
globals, so tests can build a context around fakes.

The hosts file, backup manager and route source are owned by the syncer,
which re-points them when the config changes; the context reads them from
there so both always agree.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from devproxy_agent.backups import BackupManager
from devproxy_agent.config import ConfigStore
from devproxy_agent.hosts import HostsFile
from devproxy_agent.routes import DevProxyRouteSource, RouteSource
from devproxy_agent.status import StatusReporter
from devproxy_agent.syncer import HostsSyncer


@dataclass
class AgentContext:
    config_store: ConfigStore
    status: StatusReporter
    syncer: HostsSyncer

    @property
    def hosts_file(self) -> HostsFile:
        return self.syncer.hosts_file

    @property
    def backups(self) -> BackupManager:
        return self.syncer.backups

    @property
    def route_source(self) -> RouteSource:
        return self.syncer.route_source


def create_context(
    config_dir: Path,
    *,
    environ: Optional[Mapping[str, str]] = None,
    route_source: Optional[RouteSource] = None,
    config_store: Optional[ConfigStore] = None,
) -> AgentContext:
    config_store = config_store or ConfigStore(Path(config_dir), environ=environ)
    config = config_store.get()

    status = StatusReporter()
    syncer = HostsSyncer(
        config_store=config_store,
        hosts_file=HostsFile(config.resolved_hosts_path()),
        backups=BackupManager(config.resolved_backup_dir(config_store.config_dir)),
        route_source=route_source
        or DevProxyRouteSource(timeout_seconds=config.fetch_timeout_seconds),
        status=status,
    )
    return AgentContext(config_store=config_store, status=status, syncer=syncer)

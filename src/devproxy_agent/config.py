"""Agent configuration.

Configuration lives in ``config.yaml`` inside the config directory. Environment
variables override file values at load time:

    DEVPROXY_API_URL                 DevProxy API base URL (default: http://localhost:8090)
    DEVPROXY_SYNC_INTERVAL_SECONDS   Poll interval in seconds (default: 5, minimum 1)
    DEVPROXY_MAX_BACKUPS             Hosts backups to keep (default: 20, 0 keeps none)
    DEVPROXY_TARGET_IP               IP written for every managed hostname (default: 127.0.0.1)
    DEVPROXY_FETCH_TIMEOUT_SECONDS   DevProxy API request timeout (default: 5.0, must be > 0)
    DEVPROXY_HOSTS_PATH              Hosts file path (default: platform hosts file)
    DEVPROXY_BACKUP_DIR              Backup directory (default: <config dir>/backups)
    DEVPROXY_LOG_LEVEL               DEBUG, INFO, WARNING, ERROR (default: INFO)

Example config.yaml:

    api_url: "http://localhost:8090"
    sync_interval_seconds: 5
    max_backups: 20
"""

from __future__ import annotations

import logging
import os
import platform
import threading
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from devproxy_agent.errors import ConfigError
from devproxy_agent.hosts import default_hosts_path

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"

ENV_OVERRIDES = {
    "api_url": "DEVPROXY_API_URL",
    "sync_interval_seconds": "DEVPROXY_SYNC_INTERVAL_SECONDS",
    "max_backups": "DEVPROXY_MAX_BACKUPS",
    "target_ip": "DEVPROXY_TARGET_IP",
    "fetch_timeout_seconds": "DEVPROXY_FETCH_TIMEOUT_SECONDS",
    "hosts_path": "DEVPROXY_HOSTS_PATH",
    "backup_dir": "DEVPROXY_BACKUP_DIR",
    "log_level": "DEVPROXY_LOG_LEVEL",
}


# =============================================================================
# File Watching Utilities
# =============================================================================


def get_config_file_mtime(config_path: Path) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def default_config_dir() -> Path:
    """Return the platform-specific config directory."""
    if platform.system().lower() == "windows":
        appdata = os.environ.get("APPDATA") or str(
            Path(os.environ.get("USERPROFILE", str(Path.home()))) / "AppData" / "Roaming"
        )
        return Path(appdata) / "DevProxy"
    return Path.home() / ".config" / "devproxy"


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class AgentConfig:
    """Agent settings. Empty ``hosts_path``/``backup_dir`` mean platform defaults."""

    api_url: str = "http://localhost:8090"
    sync_interval_seconds: int = 5
    max_backups: int = 20
    target_ip: str = "127.0.0.1"
    fetch_timeout_seconds: float = 5.0
    hosts_path: str = ""
    backup_dir: str = ""
    log_level: str = "INFO"

    def resolved_hosts_path(self) -> Path:
        return Path(self.hosts_path) if self.hosts_path else default_hosts_path()

    def resolved_backup_dir(self, config_dir: Path) -> Path:
        return Path(self.backup_dir) if self.backup_dir else Path(config_dir) / "backups"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw file or env value to the type of the named field."""
    try:
        if name in ("sync_interval_seconds", "max_backups"):
            if isinstance(value, bool):
                raise ValueError("booleans are not integers")
            return int(value)
        if name == "fetch_timeout_seconds":
            timeout = float(value)
            if timeout <= 0:
                raise ValueError("must be positive")
            return timeout
        if name == "log_level":
            return str(value).strip().upper()
        return "" if value is None else str(value).strip()
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name!r}: {value!r} ({e})") from e


def config_from_mapping(data: Mapping[str, Any]) -> AgentConfig:
    """Build a config from a parsed mapping, falling back to defaults."""
    known = {f.name for f in fields(AgentConfig)}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{key}'")
            continue
        values[key] = _coerce(key, value)
    return AgentConfig(**values)


def _apply_env_overrides(config: AgentConfig, environ: Mapping[str, str]) -> AgentConfig:
    changes: Dict[str, Any] = {}
    for name, env_var in ENV_OVERRIDES.items():
        raw = environ.get(env_var)
        if raw is None or raw.strip() == "":
            continue
        changes[name] = _coerce(name, raw)
        logger.debug(f"Config override from {env_var}")
    return replace(config, **changes) if changes else config


def read_config_file(config_path: Path) -> AgentConfig:
    """Parse a YAML config file. Missing file means defaults."""
    if not config_path.exists():
        return AgentConfig()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config from {config_path}: {e}") from e

    if data is None:
        return AgentConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return config_from_mapping(data)


def load_config(
    config_dir: Path, environ: Optional[Mapping[str, str]] = None
) -> AgentConfig:
    """Load config.yaml from ``config_dir`` and apply environment overrides."""
    environ = os.environ if environ is None else environ
    config = read_config_file(Path(config_dir) / CONFIG_FILENAME)
    return _apply_env_overrides(config, environ)


def save_config(config: AgentConfig, config_dir: Path) -> Path:
    """Write config.yaml atomically via a temp file."""
    config_dir = Path(config_dir)
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / CONFIG_FILENAME
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(yaml.safe_dump(config.to_dict(), sort_keys=True), "utf-8")
    tmp_path.replace(path)
    return path


def init_config(config_dir: Path) -> Path:
    """Create config_dir and a default config.yaml if none exists yet."""
    path = Path(config_dir) / CONFIG_FILENAME
    if not path.exists():
        save_config(AgentConfig(), config_dir)
        logger.info(f"Wrote default config to {path}")
    return path


# =============================================================================
# Live Config Store
# =============================================================================


class ConfigStore:
    """Thread-safe holder of the current config with file change detection.

    The sync worker calls ``get()`` every cycle, so edits to config.yaml picked
    up by ``reload_if_changed()`` take effect without a restart. The worker
    re-points the hosts file, backup directory and fetch timeout when they
    change; ``run_agent`` applies a new log level.
    """

    def __init__(
        self,
        config_dir: Path,
        config: Optional[AgentConfig] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config_dir = Path(config_dir)
        self._environ = environ
        self._lock = threading.Lock()
        self._config = config if config is not None else load_config(self.config_dir, environ)
        self._mtime = get_config_file_mtime(self.path)

    @property
    def path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    def get(self) -> AgentConfig:
        with self._lock:
            return self._config

    def update(self, **changes: Any) -> AgentConfig:
        """Apply changes, persist them to config.yaml and return the new config.

        Only the changed keys are written on top of the file's own values, so
        environment overrides never end up in the file.
        """
        coerced = {name: _coerce(name, value) for name, value in changes.items()}
        with self._lock:
            try:
                config = replace(self._config, **coerced)
                file_config = replace(read_config_file(self.path), **coerced)
            except TypeError as e:
                raise ConfigError(str(e)) from e
            save_config(file_config, self.config_dir)
            self._config = config
            self._mtime = get_config_file_mtime(self.path)
            return self._config

    def reload_if_changed(self) -> bool:
        """Reload when config.yaml's mtime moved. Keeps the old config on error."""
        mtime = get_config_file_mtime(self.path)
        with self._lock:
            if mtime == self._mtime:
                return False
            self._mtime = mtime
        logger.info(f"Config change detected in: {self.path.name}")
        try:
            config = load_config(self.config_dir, self._environ)
        except ConfigError as e:
            logger.error(f"Failed to reload configuration: {e}")
            logger.warning("Continuing with previous configuration")
            return False
        with self._lock:
            self._config = config
        return True

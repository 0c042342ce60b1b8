#!/usr/bin/env python3
"""devproxy-agent - Automatic hosts file management for DevProxy.

Runs on the host machine (outside Docker) and keeps the system hosts file in
sync with the routes configured in a DevProxy instance. Every enabled route
domain is pointed at the configured target IP inside a marker-delimited
section; the rest of the hosts file is never touched.

Commands:
    run        Sync continuously until SIGINT/SIGTERM (default)
    once       Run a single sync cycle and exit
    entries    Print the entries currently managed in the hosts file
    backups    List hosts file backups, newest first
    restore    Restore the hosts file from a named backup

Options:
    --config-dir   Config directory (default: ~/.config/devproxy, %APPDATA%\\DevProxy)
    --api-url      DevProxy API URL (saved to the config file)
    --log-level    DEBUG, INFO, WARNING, ERROR (default: DEVPROXY_LOG_LEVEL or config)

Writing the hosts file needs root (or Administrator on Windows).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from devproxy_agent.config import ConfigStore, default_config_dir, init_config
from devproxy_agent.context import AgentContext, create_context
from devproxy_agent.errors import AgentError

__version__ = "0.1.0"

CONFIG_POLL_SECONDS = 5.0

logger = logging.getLogger(__name__)

# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def apply_log_level(level: str) -> None:
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# =============================================================================
# Commands
# =============================================================================


def run_agent(
    ctx: AgentContext,
    *,
    shutdown: Optional[threading.Event] = None,
    poll_seconds: float = CONFIG_POLL_SECONDS,
    follow_log_level: bool = True,
) -> int:
    """Run the sync loop until ``shutdown`` is set or a signal arrives.

    Config file edits are picked up every ``poll_seconds``. Paths and timeouts
    are re-applied by the syncer on its next cycle; the log level is applied
    here unless it was pinned on the command line (``follow_log_level``).
    """
    shutdown = shutdown or threading.Event()

    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[sig] = signal.signal(sig, lambda *_: shutdown.set())

    config = ctx.config_store.get()
    logger.info(f"DevProxy API: {config.api_url}")
    logger.info(f"Hosts file: {ctx.hosts_file.path}")
    logger.info(f"Backups: {ctx.backups.backup_dir} (keeping {config.max_backups})")
    logger.info(f"Poll interval: {config.sync_interval_seconds}s")

    ctx.syncer.start()
    try:
        # Polling loop with config file watching
        while not shutdown.wait(poll_seconds):
            if ctx.config_store.reload_if_changed():
                if follow_log_level:
                    apply_log_level(ctx.config_store.get().log_level)
                logger.info("Triggering immediate sync after config reload")
                ctx.syncer.force_sync_now()
    except KeyboardInterrupt:
        pass
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    logger.info("Shutting down gracefully...")
    ctx.syncer.stop()
    return 0


def run_once(ctx: AgentContext) -> int:
    status = ctx.syncer.sync_once()
    print(json.dumps(status.to_dict(), indent=2))
    return 1 if status.last_error else 0


def show_entries(ctx: AgentContext) -> int:
    for entry in ctx.hosts_file.read_managed_entries():
        print(entry)
    return 0


def show_backups(ctx: AgentContext) -> int:
    backups = ctx.backups.list()
    if not backups:
        print(f"No backups in {ctx.backups.backup_dir}")
        return 0
    for backup in backups:
        print(f"{backup.name}\t{backup.size}\t{backup.modified:%Y-%m-%d %H:%M:%S}")
    return 0


def restore_backup(ctx: AgentContext, name: str) -> int:
    path = ctx.backups.resolve(name)
    undo_path = ctx.backups.restore(path, ctx.hosts_file)
    if undo_path is not None:
        print(f"Restored {name}; previous hosts file saved as {undo_path.name}")
    else:
        print(f"Restored {name}")
    return 0


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devproxy-agent",
        description="Keep the system hosts file in sync with DevProxy routes.",
    )
    parser.add_argument("--config-dir", default="", help="Config directory")
    parser.add_argument("--api-url", default="", help="DevProxy API URL (overrides config)")
    parser.add_argument("--log-level", default="", help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--version", action="version", version=f"devproxy-agent {__version__}")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Sync continuously (default)")
    sub.add_parser("once", help="Run a single sync cycle")
    sub.add_parser("entries", help="Print managed hosts entries")
    sub.add_parser("backups", help="List hosts file backups")
    restore = sub.add_parser("restore", help="Restore the hosts file from a backup")
    restore.add_argument("name", help="Backup file name, e.g. hosts_20240101_120000.bak")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or os.getenv("DEVPROXY_LOG_LEVEL", "INFO"))

    config_dir = Path(args.config_dir) if args.config_dir else default_config_dir()
    try:
        init_config(config_dir)
        config_store = ConfigStore(config_dir)
        if args.api_url:
            config_store.update(api_url=args.api_url)
    except (AgentError, OSError) as e:
        logger.error(f"Failed to initialize config: {e}")
        return 1

    if not args.log_level:
        apply_log_level(config_store.get().log_level)
    logger.debug(f"Config directory: {config_dir}")

    ctx = create_context(config_dir, config_store=config_store)
    command = args.command or "run"

    try:
        if command == "run":
            logger.info(f"DevProxy Agent {__version__} starting...")
            return run_agent(ctx, follow_log_level=not args.log_level)
        if command == "once":
            return run_once(ctx)
        if command == "entries":
            return show_entries(ctx)
        if command == "backups":
            return show_backups(ctx)
        return restore_backup(ctx, args.name)
    except AgentError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())

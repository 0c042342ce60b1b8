"""Integration test running the real sync worker against a local DevProxy stub.

=============================================================================
Test Stack Overview
=============================================================================

1. **DevProxy stub** - ``http.server`` on an ephemeral localhost port serving
   ``GET /api/routes`` from a mutable list, or a 500 when told to fail.

2. **Hosts file** - a temp file seeded with user content; the agent may only
   touch its managed section.

3. **devproxy-agent** - the real HostsSyncer worker thread, real
   DevProxyRouteSource (requests) and real BackupManager.

=============================================================================
Expected Sync Behavior
=============================================================================

1. **Route Added -> Hosts Entry Appears** on the first cycle after start.
2. **Route Changed -> Section Rewritten** after a forced sync.
3. **API Down -> Hosts File Kept**, status shows disconnected.
4. **Stop** -> worker exits, no further requests.

=============================================================================
"""

import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List

import pytest

from devproxy_agent.config import AgentConfig, ConfigStore
from devproxy_agent.context import create_context

USER_CONTENT = "127.0.0.1 localhost\n::1 localhost\n"


def _step(message: str) -> None:
    """Print a formatted progress message for test output."""
    print(f"[integration] {message}", flush=True)


def _wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class DevProxyStub:
    def __init__(self) -> None:
        self.routes: List[Dict[str, Any]] = []
        self.fail = False
        self.requests = 0
        stub = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                stub.requests += 1
                if self.path != "/api/routes":
                    self.send_error(404)
                    return
                if stub.fail:
                    self.send_error(500)
                    return
                body = json.dumps(stub.routes).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}"
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def devproxy() -> Iterator[DevProxyStub]:
    stub = DevProxyStub()
    stub.start()
    yield stub
    stub.stop()


def test_agent_syncs_hosts_file_end_to_end(
    tmp_path: Path, devproxy: DevProxyStub, monkeypatch
) -> None:
    """Test the full add, change and outage cycle against a live DevProxy stub."""
    # Keep requests from routing localhost through an environment proxy.
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    hosts_path = tmp_path / "hosts"
    hosts_path.write_text(USER_CONTENT)
    config = AgentConfig(
        api_url=devproxy.url,
        sync_interval_seconds=3600,
        max_backups=2,
        hosts_path=str(hosts_path),
        backup_dir=str(tmp_path / "backups"),
        fetch_timeout_seconds=2.0,
    )
    store = ConfigStore(tmp_path / "config", config=config, environ={})
    ctx = create_context(tmp_path / "config", config_store=store)

    devproxy.routes = [
        {"id": 1, "name": "web", "domain": "web.test", "target": "web:80", "enabled": True},
        {"id": 2, "name": "off", "domain": "off.test", "target": "off:80", "enabled": False},
    ]

    _step("Starting agent")
    ctx.syncer.start()
    try:
        assert _wait_for(lambda: ctx.hosts_file.read_managed_entries() == ["127.0.0.1 web.test"])
        assert hosts_path.read_text().startswith(USER_CONTENT)
        assert _wait_for(lambda: ctx.syncer.get_status().connected is True)
        assert ctx.syncer.get_status().has_permission is True

        _step("Adding a route and forcing a sync")
        devproxy.routes.append(
            {"id": 3, "name": "api", "domain": "api.test", "target": "api:80", "enabled": True}
        )
        ctx.syncer.force_sync_now()
        assert _wait_for(
            lambda: ctx.hosts_file.read_managed_entries()
            == ["127.0.0.1 api.test", "127.0.0.1 web.test"]
        )
        assert _wait_for(lambda: ctx.syncer.get_status().route_count == 2)

        _step("Taking the API down")
        content = hosts_path.read_text()
        devproxy.fail = True
        ctx.syncer.force_sync_now()
        assert _wait_for(lambda: ctx.syncer.get_status().connected is False)
        status = ctx.syncer.get_status()
        assert "500" in status.last_error
        assert hosts_path.read_text() == content
    finally:
        _step("Stopping agent")
        ctx.syncer.stop(timeout=10)

    assert not ctx.syncer.is_running
    assert len(ctx.backups.list()) == 2
    requests_after_stop = devproxy.requests
    time.sleep(0.1)
    assert devproxy.requests == requests_after_stop

"""Route source: reads the desired route set from the DevProxy API."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List

import requests

from devproxy_agent.errors import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """A DevProxy route. Only ``domain`` and ``enabled`` drive the hosts file."""

    domain: str
    enabled: bool = True
    id: int = 0
    name: str = ""
    target: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        # A null or missing domain decodes as "" and is filtered out later.
        domain = data.get("domain") or ""
        if not isinstance(domain, str):
            raise ValueError(f"route domain is not a string: {data!r}")
        return cls(
            domain=domain,
            enabled=bool(data.get("enabled", False)),
            id=int(data.get("id") or 0),
            name=str(data.get("name") or ""),
            target=str(data.get("target") or ""),
        )


class RouteSource(ABC):
    """Abstract base class for route sources."""

    @abstractmethod
    def fetch(self, api_url: str) -> List[Route]:
        """Return the current routes or raise FetchError."""
        pass

    def set_timeout(self, seconds: float) -> None:
        """Apply a new request timeout. Sources without one ignore it."""
        pass


class DevProxyRouteSource(RouteSource):
    """DevProxy HTTP API route source (``GET /api/routes``)."""

    def __init__(self, timeout_seconds: float = 5.0):
        self._timeout = timeout_seconds
        self._session = requests.Session()

    def set_timeout(self, seconds: float) -> None:
        self._timeout = seconds

    def fetch(self, api_url: str) -> List[Route]:
        url = f"{api_url.rstrip('/')}/api/routes"
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise FetchError(f"DevProxy returned status {response.status_code}") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"connect to DevProxy: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(f"decode response: {e}") from e

        if payload is None:
            return []
        if not isinstance(payload, list):
            raise FetchError(
                f"decode response: expected list, got {type(payload).__name__}"
            )

        routes: List[Route] = []
        for item in payload:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed route: {item}")
                continue
            try:
                routes.append(Route.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed route: {e}")
        return routes

"""HTTP client for the target dataflow platform's controller.

The harness only drives the platform: it installs the recipe, fills base
tables, opens per-user universes and reads views. Every call is synchronous
and any failure surfaces as PlatformError; nothing is retried.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Iterable

import requests

from errors import PlatformError

PLATFORM_URL = os.getenv("PLATFORM_URL", "http://127.0.0.1:6033")
# Unset means block until the platform answers.
_TIMEOUT_RAW = os.getenv("PLATFORM_TIMEOUT_SECONDS")
REQUEST_TIMEOUT_SECONDS = float(_TIMEOUT_RAW) if _TIMEOUT_RAW else None
SETTLE_SECONDS = float(os.getenv("SETTLE_SECONDS", "2.0"))

REUSE_STRATEGIES = ("no", "finkelstein", "relaxed", "full")
MATERIALIZATION_STRATEGIES = ("full", "partial", "shallow-readers", "shallow-all")

LOGGER = logging.getLogger(__name__)


class TableHandle:
    """Write handle for one base table."""

    def __init__(self, client: PlatformClient, name: str) -> None:
        self.client = client
        self.name = name

    def insert_all(self, rows: Iterable[list[Any]]) -> int:
        """Insert every row in one batch and return the number of rows sent."""
        batch = [list(row) for row in rows]
        self.client.rpc(f"table/{self.name}/insert", {"rows": batch})
        return len(batch)


class ViewHandle:
    """Read handle for one view (reader node)."""

    def __init__(self, client: PlatformClient, name: str) -> None:
        self.client = client
        self.name = name

    def lookup(self, key: Any, block: bool = True) -> list[Any]:
        body = self.client.rpc(f"view/{self.name}/lookup", {"keys": [key], "block": block})
        rows = body.get("rows") if isinstance(body, dict) else None
        if not isinstance(rows, list):
            raise PlatformError(f"Unexpected lookup response shape from view {self.name}: {body}")
        return rows


class PlatformClient:
    """Administrative and query interface of one platform deployment."""

    def __init__(
        self,
        base_url: str = PLATFORM_URL,
        timeout: float | None = REQUEST_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def rpc(self, path: str, payload: Any = None) -> Any:
        """POST one JSON request to the controller and return the decoded reply."""
        url = f"{self.base_url}/{path}"
        LOGGER.debug("Platform call: %s", path)
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise PlatformError(f"Platform call {path} failed: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PlatformError(f"Platform call {path} returned invalid json") from exc

    def configure(self, reuse: str, materialization: str) -> None:
        """Send the deployment's query-reuse and materialization strategies."""
        if reuse not in REUSE_STRATEGIES:
            raise PlatformError(f"Unknown reuse strategy: {reuse}")
        if materialization not in MATERIALIZATION_STRATEGIES:
            raise PlatformError(f"Unknown materialization strategy: {materialization}")
        self.rpc(
            "configure",
            {"reuse": reuse, "materialization": materialization, "sharding": None},
        )

    def install_recipe(self, recipe: str) -> None:
        self.rpc("install_recipe", {"recipe": recipe})

    def extend_recipe(self, recipe: str) -> None:
        self.rpc("extend_recipe", {"recipe": recipe})

    def set_security_config(self, policies: str) -> None:
        self.rpc("set_security_config", {"config": policies})

    def table(self, name: str) -> TableHandle:
        self.rpc("table_builder", {"name": name})
        return TableHandle(self, name)

    def view(self, name: str) -> ViewHandle:
        self.rpc("view_builder", {"name": name})
        return ViewHandle(self, name)

    def create_universe(self, context: dict[str, Any]) -> None:
        """Create an isolated per-user universe; returns once the platform reports it ready."""
        self.rpc("create_universe", {"context": context})

    def statistics(self) -> dict[str, Any]:
        body = self.rpc("get_statistics")
        if not isinstance(body, dict):
            raise PlatformError(f"Unexpected statistics response shape: {body}")
        return body

    def graphviz(self) -> str:
        body = self.rpc("graphviz")
        if not isinstance(body, str):
            raise PlatformError("Unexpected graphviz response: expected a string")
        return body


def wait_for_convergence(
    seconds: float = SETTLE_SECONDS,
    reason: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Pause so the platform can finish asynchronous migrations.

    The platform exposes no readiness acknowledgement for this, so the wait is
    a fixed, configurable delay. Runs flake if convergence takes longer.
    """
    if seconds <= 0:
        return
    LOGGER.debug("Waiting %.1fs for platform convergence (%s)", seconds, reason or "settle")
    sleep(seconds)

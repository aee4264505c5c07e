"""Shared fixtures: an in-memory stand-in for the platform controller."""

from __future__ import annotations

from typing import Any

import pytest

from errors import PlatformError


class FakeTable:
    def __init__(self, platform: FakePlatform, name: str) -> None:
        self.platform = platform
        self.name = name

    def insert_all(self, rows: Any) -> int:
        if self.name in self.platform.fail_tables:
            raise PlatformError(f"insert into {self.name} failed")
        batch = [list(r) for r in rows]
        self.platform.rows.setdefault(self.name, []).extend(batch)
        return len(batch)


class FakeView:
    def __init__(self, name: str) -> None:
        self.name = name
        self.lookups: list[tuple[Any, bool]] = []

    def lookup(self, key: Any, block: bool = True) -> list[Any]:
        self.lookups.append((key, block))
        return [[self.name, key]]


class FakePlatform:
    """Records every administrative call in order."""

    def __init__(self, stats: dict[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.rows: dict[str, list[list[Any]]] = {}
        self.views: dict[str, FakeView] = {}
        self.universes: list[dict[str, Any]] = []
        self.fail_tables: set[str] = set()
        self.fail_universe_at: int | None = None
        self.stats = stats if stats is not None else {
            "0.0": [{"total_time": 1}, {"1": {"desc": "B", "mem_size": 100}}],
        }

    def configure(self, reuse: str, materialization: str) -> None:
        self.calls.append(("configure", (reuse, materialization)))

    def install_recipe(self, recipe: str) -> None:
        self.calls.append(("install_recipe", recipe))

    def extend_recipe(self, recipe: str) -> None:
        self.calls.append(("extend_recipe", recipe))

    def set_security_config(self, policies: str) -> None:
        self.calls.append(("set_security_config", policies))

    def table(self, name: str) -> FakeTable:
        self.calls.append(("table", name))
        return FakeTable(self, name)

    def view(self, name: str) -> FakeView:
        self.calls.append(("view", name))
        return self.views.setdefault(name, FakeView(name))

    def create_universe(self, context: dict[str, Any]) -> None:
        if self.fail_universe_at is not None and len(self.universes) == self.fail_universe_at:
            raise PlatformError("create_universe failed")
        self.calls.append(("create_universe", context))
        self.universes.append(context)

    def statistics(self) -> dict[str, Any]:
        self.calls.append(("statistics", None))
        return self.stats

    def graphviz(self) -> str:
        self.calls.append(("graphviz", None))
        return "digraph {}"


@pytest.fixture
def fake_platform() -> FakePlatform:
    return FakePlatform()

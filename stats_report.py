"""Latency percentile report and materialization memory snapshots.

Two outputs are produced:

  stdout: tab-separated percentile table (50/95/99/max) per
  operation and phase, printed at the end of the run.

  memory_snapshots.csv: one row per snapshot label with the platform's base
  table, reader and other node memory, tagged with the
  logged-in fraction. Appended to across runs.
"""

from __future__ import annotations

import csv
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, NamedTuple

import psutil

from bench_runner import LatencyStats
from errors import PlatformError
from platform_client import PlatformClient

LOGGER = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configurable paths
# ---------------------------------------------------------------------------

MEMORY_CSV_PATH = os.getenv("MEMORY_CSV_PATH", "memory_snapshots.csv")

MEMORY_COLUMNS = [
    "logged_in_fraction",
    "logged_in_users",
    "snapshot",
    "base_mem",
    "reader_mem",
    "other_mem",
]

PERCENTILES = (50, 95, 99, 100)
PHASES = ("cold", "warm")

BASE_NODE_DESC = "B"
READER_NODE_DESC = "reader node"


# ---------------------------------------------------------------------------
# Latency percentiles
# ---------------------------------------------------------------------------


class PercentileRow(NamedTuple):
    op: str
    phase: str
    pct: int
    micros: int


def percentile_rows(stats: LatencyStats) -> list[PercentileRow]:
    """Rows ordered by percentile, then phase, then operation name."""
    rows: list[PercentileRow] = []
    for pct in PERCENTILES:
        for phase in PHASES:
            histograms = stats.phase(phase)
            for op in sorted(histograms, key=str):
                hist = histograms[op]
                value = hist.max() if pct == 100 else hist.value_at_percentile(pct)
                rows.append(PercentileRow(str(op), phase, pct, value))
    return rows


def format_percentile_report(rows: list[PercentileRow]) -> str:
    lines = ["# op\tphase\tpct\ttime"]
    lines.extend(f"{r.op}\t{r.phase}\t{r.pct}\t{r.micros:.2f}\tµs" for r in rows)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Memory snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MemoryBreakdown:
    base: int = 0
    reader: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return self.base + self.reader + self.other


def iter_node_stats(stats: dict[str, Any]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield ``(domain, node_stats)`` once per node from ``{domain: [domain_stats, {node: node_stats}]}``."""
    for domain, entry in stats.items():
        if isinstance(entry, (list, tuple)) and len(entry) == 2:
            nodes = entry[1]
        elif isinstance(entry, dict) and "nodes" in entry:
            nodes = entry["nodes"]
        else:
            raise PlatformError(f"Unexpected statistics entry for domain {domain}")
        if not isinstance(nodes, dict):
            raise PlatformError(f"Node statistics for domain {domain} are not an object")
        for node in nodes.values():
            if not isinstance(node, dict):
                raise PlatformError(f"Node statistics entry in domain {domain} is not an object")
            yield domain, node


def classify_memory(stats: dict[str, Any]) -> MemoryBreakdown:
    """Split per-node memory into base tables, readers and everything else."""
    base = reader = other = 0
    for domain, node in iter_node_stats(stats):
        size = node.get("mem_size", 0)
        if isinstance(size, bool) or not isinstance(size, int):
            raise PlatformError(f"Bad mem_size for node in domain {domain}: {size!r}")
        desc = node.get("desc")
        if desc == BASE_NODE_DESC:
            base += size
        elif desc == READER_NODE_DESC:
            reader += size
        else:
            other += size
    return MemoryBreakdown(base=base, reader=reader, other=other)


class MemorySnapshotRecorder:
    """Appends one memory row per ``record_snapshot`` call for a single deployment."""

    def __init__(
        self,
        platform: PlatformClient,
        login_fraction: float,
        nlogged: int,
        csv_path: str | None = None,
    ) -> None:
        self.platform = platform
        self.login_fraction = login_fraction
        self.nlogged = nlogged
        self.csv_path = csv_path or MEMORY_CSV_PATH

    def record_snapshot(self, label: str) -> MemoryBreakdown:
        _print_process_memory(label)

        LOGGER.debug("Extracting materialization memory stats at %s", label)
        breakdown = classify_memory(self.platform.statistics())

        path = Path(self.csv_path)
        write_header = not path.exists() or path.stat().st_size == 0
        with path.open("a", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=MEMORY_COLUMNS)
            if write_header:
                writer.writeheader()
            writer.writerow({
                "logged_in_fraction": self.login_fraction,
                "logged_in_users": self.nlogged,
                "snapshot": label,
                "base_mem": breakdown.base,
                "reader_mem": breakdown.reader,
                "other_mem": breakdown.other,
            })

        print(f"# base memory @ {label}: {breakdown.base}")
        print(f"# reader memory @ {label}: {breakdown.reader}")
        print(f"# materialization memory @ {label}: {breakdown.other}")
        LOGGER.info("Memory snapshot %s written to %s", label, self.csv_path)
        return breakdown


def _print_process_memory(label: str) -> None:
    LOGGER.debug("Extracting process memory stats at %s", label)
    try:
        info = psutil.Process().memory_info()
    except psutil.Error as exc:
        LOGGER.warning("Process memory stats unavailable: %s", exc)
        return
    print(f"# VmRSS @ {label}: {info.rss}")
    # "data" is only reported on Linux and some BSDs.
    data = getattr(info, "data", None)
    if data is not None:
        print(f"# VmData @ {label}: {data}")

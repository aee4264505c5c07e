"""CLI entrypoint: benchmark a HotCRP-like review workload under security policies."""

from __future__ import annotations

import argparse
import logging
import random
import time
from pathlib import Path

from dotenv import load_dotenv

from bench_runner import BenchmarkRunner, LatencyStats
from errors import HarnessError
from openreview_feed import DEFAULT_SOURCE_URL, fetch_source
from platform_client import (
    MATERIALIZATION_STRATEGIES,
    REUSE_STRATEGIES,
    SETTLE_SECONDS,
    PlatformClient,
    wait_for_convergence,
)
from stats_report import MemorySnapshotRecorder, format_percentile_report, percentile_rows
from tenants import attach_views, logged_in_count, provision_tenants
from workload import load_workload, synthesize_workload

LOGGER = logging.getLogger(__name__)


def _fraction(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a number: {raw}") from exc
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError(f"must be between 0.0 and 1.0, got {value}")
    return value


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(
        description="Benchmarks a HotCRP-like application with security policies."
    )
    parser.add_argument("--reuse", choices=REUSE_STRATEGIES, default="no", help="Query reuse algorithm")
    parser.add_argument(
        "-m",
        "--materialization",
        choices=MATERIALIZATION_STRATEGIES,
        default="full",
        help="Materialization strategy for the benchmark",
    )
    parser.add_argument("--source", default=DEFAULT_SOURCE_URL, help="Source to pull paper data from")
    parser.add_argument("-s", "--schema", default="jeeves_schema.sql", help="SQL schema file")
    parser.add_argument("-q", "--queries", default="jeeves_queries.sql", help="SQL query file")
    parser.add_argument("-p", "--policies", default="jeeves_policies.json", help="Security policies file")
    parser.add_argument(
        "--late-queries",
        default=None,
        help="Optional SQL file installed after population, e.g. group-context queries",
    )
    parser.add_argument("-n", "--npapers", type=int, default=10000, help="Only fetch first n papers")
    parser.add_argument(
        "-l",
        "--logged-in",
        type=_fraction,
        default=1.0,
        help="Fraction of users that are logged in",
    )
    parser.add_argument("--iter", type=int, default=1, help="Number of warm replays after the single cold pass")
    parser.add_argument("-g", "--graph", default=None, help="File to dump the application's query graph, if set")
    parser.add_argument("--memory-csv", default=None, help="CSV file that memory snapshots are appended to")
    parser.add_argument(
        "--settle-seconds",
        type=float,
        default=SETTLE_SECONDS,
        help="Fixed wait for the platform to converge after startup and late recipe changes",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for review shuffling and read order")
    parser.add_argument(
        "--exclude-self-reviews",
        action="store_true",
        help="Re-balance assignments so no reviewer reviews their own paper",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Enable verbose output")
    return parser.parse_args(argv)


def _read_file(path: str, what: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise HarnessError(f"Failed to read {what} file {path}: {exc}") from exc


def run(args: argparse.Namespace, platform: PlatformClient | None = None) -> LatencyStats:
    """Run one benchmark deployment end to end and print the report."""
    rng = random.Random(args.seed)
    source = fetch_source(args.source, args.npapers)
    workload = synthesize_workload(source, rng=rng, exclude_self=args.exclude_self_reviews)

    print(f"# nauthors: {len(source.authors)}")
    print(f"# nreviewers: {workload.nreviewers}")
    print(f"# npapers: {len(source.papers)}")
    print(f"# nreviews: {len(source.reviews)}")
    print(f"# materialization: {args.materialization}")

    nlogged = logged_in_count(args.logged_in, len(source.authors))
    print(f"# logged-in users: {nlogged}")

    platform = platform or PlatformClient()
    LOGGER.info("Configuring platform: reuse=%s materialization=%s", args.reuse, args.materialization)
    platform.configure(args.reuse, args.materialization)

    init = time.perf_counter()
    wait_for_convergence(args.settle_seconds, reason="startup")

    LOGGER.info("Setting up database schema")
    platform.install_recipe(_read_file(args.schema, "schema"))
    LOGGER.debug("Adding security policies")
    platform.set_security_config(_read_file(args.policies, "policy"))
    LOGGER.debug("Adding queries")
    platform.extend_recipe(_read_file(args.queries, "queries"))
    LOGGER.debug("Database schema setup done")

    recorder = MemorySnapshotRecorder(platform, args.logged_in, nlogged, csv_path=args.memory_csv)

    load_workload(platform, workload)
    recorder.record_snapshot("populated")

    if args.graph:
        LOGGER.debug("Extracting query graph to %s", args.graph)
        try:
            Path(args.graph).write_text(platform.graphviz(), encoding="utf-8")
        except OSError as exc:
            raise HarnessError(f"Failed to save graphviz output: {exc}") from exc

    if args.late_queries:
        platform.extend_recipe(_read_file(args.late_queries, "late queries"))
        wait_for_convergence(args.settle_seconds, reason="late queries")

    tenants = provision_tenants(platform, source.authors, nlogged)
    attach_views(platform, tenants)
    print(f"# setup time: {time.perf_counter() - init:.6f}s")

    stats = LatencyStats()
    LOGGER.info("Measuring reads: 1 cold pass, %s warm pass(es)", args.iter)
    BenchmarkRunner(tenants, stats, rng=rng).run(warm_passes=args.iter)
    for phase in ("cold", "warm"):
        for op, hist in stats.phase(phase).items():
            LOGGER.info("Recorded %s %s samples for %s", hist.count(), phase, op)

    LOGGER.info("Measuring space overhead")
    # Every view has been read by now, so no filling reads are needed.
    recorder.record_snapshot("end")

    print(format_percentile_report(percentile_rows(stats)))
    return stats


def main(argv: list[str] | None = None) -> None:
    """Initialize config and execute the benchmark."""
    load_dotenv()
    args = parse_args(argv)
    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    if args.iter < 1:
        raise SystemExit("--iter must be at least 1")

    try:
        run(args)
    except HarnessError as exc:
        LOGGER.critical("Benchmark aborted: %s: %s", type(exc).__name__, exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()

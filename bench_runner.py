"""Cold-then-warm read protocol over the logged-in tenants."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from histogram import LatencyHistogram
from models import Operation
from tenants import PAPER_LIST_VIEW, TenantContext

# The paper-list views are keyed by a single constant bogokey.
BOGOKEY = 0

LOGGER = logging.getLogger(__name__)


class Phase(Enum):
    NOT_STARTED = "not-started"
    COLD = "cold"
    WARM = "warm"
    DONE = "done"


@dataclass(slots=True)
class LatencyStats:
    """Cold and warm histograms keyed by operation, owned by the caller."""

    cold: dict[Operation, LatencyHistogram] = field(default_factory=dict)
    warm: dict[Operation, LatencyHistogram] = field(default_factory=dict)

    def phase(self, name: str) -> dict[Operation, LatencyHistogram]:
        if name == "cold":
            return self.cold
        if name == "warm":
            return self.warm
        raise ValueError(f"Unknown phase: {name}")

    @staticmethod
    def record(stats: dict[Operation, LatencyHistogram], op: Operation, micros: int) -> None:
        stats.setdefault(op, LatencyHistogram()).record(micros)


class BenchmarkRunner:
    """Runs one cold pass and one or more exact warm replays, strictly sequentially.

    Every cold request is appended to ``requests``; each warm pass replays
    that list in order. Each view is read cold exactly once, so build one
    runner per provisioned set of tenants.
    """

    def __init__(
        self,
        tenants: list[TenantContext],
        stats: LatencyStats,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.tenants = {t.identity: t for t in tenants}
        self.stats = stats
        self.rng = rng or random.Random()
        self.clock = clock
        self.phase = Phase.NOT_STARTED
        self.requests: list[tuple[Operation, str]] = []

    def _issue(self, op: Operation, identity: str) -> tuple[Any, int]:
        tenant = self.tenants[identity]
        if op is Operation.READ_PAPER_LIST:
            view = tenant.views[PAPER_LIST_VIEW]
        else:
            raise ValueError(f"Unsupported operation: {op}")

        begin = self.clock()
        result = view.lookup(BOGOKEY, block=True)
        took = self.clock() - begin
        return result, int(took * 1_000_000)

    def run_cold(self) -> None:
        if self.phase is not Phase.NOT_STARTED:
            raise RuntimeError(f"Cold phase cannot start from phase {self.phase.value}")
        self.phase = Phase.COLD
        LOGGER.info("Starting cold read benchmarks")

        identities = list(self.tenants)
        # No warm-up discard: the first read of each view is the cold sample.
        for identity in self.rng.sample(identities, len(identities)):
            op = Operation.READ_PAPER_LIST
            LOGGER.debug("Reading paper list: uid=%s", identity)
            self.requests.append((op, identity))
            result, micros = self._issue(op, identity)
            LOGGER.debug("Recording sample: took=%sus rows=%s", micros, len(result))
            LatencyStats.record(self.stats.cold, op, micros)

    def run_warm(self, passes: int = 1) -> None:
        """Replay the cold request sequence ``passes`` times into the warm histograms."""
        if self.phase is not Phase.COLD:
            raise RuntimeError(f"Warm phase cannot start from phase {self.phase.value}")
        if passes < 1:
            raise ValueError(f"passes must be at least 1, got {passes}")
        self.phase = Phase.WARM

        for n in range(1, passes + 1):
            LOGGER.info("Starting warm read benchmarks (pass %s/%s)", n, passes)
            for op, identity in self.requests:
                LOGGER.debug("Reading paper list: uid=%s", identity)
                _, micros = self._issue(op, identity)
                LOGGER.debug("Recording sample: took=%sus", micros)
                LatencyStats.record(self.stats.warm, op, micros)

        self.phase = Phase.DONE

    def run(self, warm_passes: int = 1) -> list[tuple[Operation, str]]:
        """Run one cold pass, then ``warm_passes`` replays; return the request sequence."""
        self.run_cold()
        self.run_warm(warm_passes)
        return self.requests

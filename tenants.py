"""Logs simulated users in: one isolated universe and view set per tenant."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable

from platform_client import PlatformClient, ViewHandle

PAPER_LIST_VIEW = "ReviewList"

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TenantContext:
    """One logged-in user and the handles into their universe."""

    author_id: int
    identity: str
    login_seconds: float
    views: dict[str, ViewHandle] = field(default_factory=dict)

    @property
    def uid(self) -> int:
        return self.author_id + 1


def logged_in_count(fraction: float, nusers: int) -> int:
    """Number of users to log in for a logged-in fraction.

    Fractions below 1% that would round to nobody still log in one user.
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"logged-in fraction must be within [0, 1], got {fraction}")
    nlogged = math.floor(fraction * nusers)
    if nlogged == 0 and 0.0 < fraction < 0.01 and nusers > 0:
        nlogged = 1
    return nlogged


def login_sample_indices(nlogged: int) -> list[int]:
    """Indices whose login latency gets reported: 0, 1, then every nlogged // 10-th.

    With fewer than ten users only indices 0 and 1 are reported.
    """
    stride = nlogged // 10
    indices = [i for i in (0, 1) if i < nlogged]
    if stride == 0:
        return indices
    nxt = max(stride, 2)
    while nxt < nlogged:
        indices.append(nxt)
        nxt += stride
    return indices


def provision_tenants(
    platform: PlatformClient,
    authors: list[str],
    nlogged: int,
    clock: Callable[[], float] = time.perf_counter,
) -> list[TenantContext]:
    """Create one universe per logged-in author, strictly one after another."""
    LOGGER.debug("Logging in users: n=%s", nlogged)
    sampled = set(login_sample_indices(nlogged))
    tenants: list[TenantContext] = []

    for i, identity in enumerate(authors[:nlogged]):
        LOGGER.debug("Logging in user: uid=%s", identity)
        start = clock()
        platform.create_universe({"id": i + 1})
        took = clock() - start
        tenants.append(TenantContext(author_id=i, identity=identity, login_seconds=took))

        if i in sampled:
            print(f"# login sample[{i}]: {took:.6f}s")

    return tenants


def attach_views(
    platform: PlatformClient,
    tenants: list[TenantContext],
    view_prefix: str = PAPER_LIST_VIEW,
) -> None:
    """Open each tenant's own ``<prefix>_u<uid>`` view."""
    LOGGER.info("Creating api handles")
    for tenant in tenants:
        name = f"{view_prefix}_u{tenant.uid}"
        LOGGER.debug("Creating view handle: user=%s view=%s", tenant.identity, name)
        tenant.views[view_prefix] = platform.view(name)
    LOGGER.debug("All api handles created")

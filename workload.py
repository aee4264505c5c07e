"""Synthesizes the review-assignment workload and loads it into the platform."""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass, field
from typing import Any

from models import Paper, Review, SourceData
from platform_client import PlatformClient

ASSIGNMENT_GROUP_SIZE = 3
REVIEW_TEXT = "review text"

ROLE_CHAIR = "chair"
ROLE_PC = "pc"
ROLE_NORMAL = "normal"

LOGGER = logging.getLogger(__name__)

Row = list[Any]


@dataclass(slots=True)
class Workload:
    """Row sets for every base table, plus the assignment groups they came from."""

    nreviewers: int
    groups: list[list[Review]]
    tables: dict[str, list[Row]] = field(default_factory=dict)
    self_reviews: int = 0


def reviewer_count(nreviews: int, group_size: int = ASSIGNMENT_GROUP_SIZE) -> int:
    """Number of synthetic reviewers needed to cover every review in groups of group_size."""
    return math.ceil(nreviews / group_size)


def role_for(index: int, nreviewers: int) -> str:
    """Role of the author at ordinal ``index``: first is chair, next reviewers are pc."""
    if index == 0:
        return ROLE_CHAIR
    if index < nreviewers:
        return ROLE_PC
    return ROLE_NORMAL


def user_profile_rows(authors: list[str], nreviewers: int) -> list[Row]:
    return [
        [str(i + 1), email, email, "university", "0", role_for(i, nreviewers)]
        for i, email in enumerate(authors)
    ]


def paper_rows(papers: list[Paper]) -> list[Row]:
    return [[p.paper_id, str(p.owner + 1), 1 if p.accepted else 0] for p in papers]


def paper_version_rows(papers: list[Paper]) -> list[Row]:
    return [[p.paper_id, p.title, "Text", "Abstract", "0"] for p in papers]


def coauthor_rows(papers: list[Paper]) -> list[Row]:
    # The first author is listed here too, not only as the Paper owner.
    return [[p.paper_id, str(a + 1)] for p in papers for a in p.authors]


def review_assignment_rows(groups: list[list[Review]]) -> list[Row]:
    return [
        [r.paper_id, str(i + 1), f"{r.rating},{r.confidence}"]
        for i, group in enumerate(groups)
        for r in group
    ]


def review_rows(groups: list[list[Review]]) -> list[Row]:
    return [
        ["0", r.paper_id, str(i + 1), REVIEW_TEXT, r.rating, r.rating, r.rating, r.confidence]
        for i, group in enumerate(groups)
        for r in group
    ]


def partition_reviews(
    reviews: list[Review],
    group_size: int = ASSIGNMENT_GROUP_SIZE,
    rng: random.Random | None = None,
) -> list[list[Review]]:
    """Shuffle the reviews, then cut them into contiguous groups of group_size.

    Group i (0-based) is reviewed by synthetic reviewer i + 1. Only the last
    group may be short.
    """
    if group_size < 1:
        raise ValueError("group_size must be positive")
    rng = rng or random.Random()
    shuffled = list(reviews)
    rng.shuffle(shuffled)
    return [shuffled[i : i + group_size] for i in range(0, len(shuffled), group_size)]


def _is_self_review(reviewer_index: int, review: Review, papers: list[Paper]) -> bool:
    # Reviewer uid i + 1 is the author with dense id i.
    return reviewer_index in papers[review.paper_id - 1].authors


def find_self_reviews(groups: list[list[Review]], papers: list[Paper]) -> list[tuple[int, Review]]:
    """Return (group index, review) for every review assigned to one of its own authors."""
    return [
        (i, r)
        for i, group in enumerate(groups)
        for r in group
        if _is_self_review(i, r, papers)
    ]


def exclude_self_reviews(groups: list[list[Review]], papers: list[Paper]) -> int:
    """Swap reviews across groups until no reviewer judges their own paper.

    Group sizes never change. Returns the number of conflicts left unresolved.
    """
    unresolved = 0
    for gi, group in enumerate(groups):
        for ri, review in enumerate(group):
            if not _is_self_review(gi, review, papers):
                continue
            swapped = False
            for hj, other in enumerate(groups):
                if hj == gi:
                    continue
                for sj, candidate in enumerate(other):
                    if _is_self_review(gi, candidate, papers) or _is_self_review(hj, review, papers):
                        continue
                    group[ri], other[sj] = candidate, review
                    swapped = True
                    break
                if swapped:
                    break
            if not swapped:
                unresolved += 1
    return unresolved


def synthesize_workload(
    source: SourceData,
    group_size: int = ASSIGNMENT_GROUP_SIZE,
    rng: random.Random | None = None,
    exclude_self: bool = False,
) -> Workload:
    """Derive reviewers, roles and per-table rows from the normalized source graph."""
    nreviewers = reviewer_count(len(source.reviews), group_size)
    groups = partition_reviews(source.reviews, group_size, rng)

    conflicts = find_self_reviews(groups, source.papers)
    if conflicts and exclude_self:
        unresolved = exclude_self_reviews(groups, source.papers)
        LOGGER.info(
            "Self-review exclusion: conflicts=%s unresolved=%s", len(conflicts), unresolved
        )
        if unresolved:
            LOGGER.warning("%s reviews are still assigned to one of their authors", unresolved)
        conflicts = find_self_reviews(groups, source.papers)
    elif conflicts:
        # Baseline assignment keeps these; pass exclude_self to repair them.
        LOGGER.warning(
            "%s of %s reviews are assigned to a reviewer who authored the paper",
            len(conflicts),
            len(source.reviews),
        )

    workload = Workload(nreviewers=nreviewers, groups=groups, self_reviews=len(conflicts))
    workload.tables = {
        "UserProfile": user_profile_rows(source.authors, nreviewers),
        "Paper": paper_rows(source.papers),
        "PaperVersion": paper_version_rows(source.papers),
        "PaperCoauthor": coauthor_rows(source.papers),
        "ReviewAssignment": review_assignment_rows(groups),
        "Review": review_rows(groups),
    }
    return workload


_LOAD_LABELS = {
    "UserProfile": "users",
    "Paper": "paper registration",
    "PaperVersion": "paper + version",
    "PaperCoauthor": "paper authors",
    "ReviewAssignment": "review assignments",
    "Review": "reviews",
}


def load_workload(platform: PlatformClient, workload: Workload) -> dict[str, float]:
    """Insert every table's rows, returning seconds spent per table.

    The platform is assumed freshly initialized; a failed insert aborts the run.
    """
    LOGGER.info("Starting db population")
    handles = {name: platform.table(name) for name in workload.tables}

    timings: dict[str, float] = {}
    for name, rows in workload.tables.items():
        LOGGER.debug("Registering %s: n=%s", name, len(rows))
        start = time.perf_counter()
        handles[name].insert_all(rows)
        timings[name] = time.perf_counter() - start
        print(f"# {_LOAD_LABELS.get(name, name)}: {len(rows)} in {timings[name]:.6f}s")

    LOGGER.debug("Population completed")
    return timings

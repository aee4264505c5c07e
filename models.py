"""Shared typed models for the benchmark harness."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True, slots=True)
class Paper:
    """One submission; ``paper_id`` is the 1-based id used in platform rows."""

    paper_id: int
    title: str
    accepted: bool
    authors: tuple[int, ...]

    @property
    def owner(self) -> int:
        return self.authors[0]


@dataclass(frozen=True, slots=True)
class Review:
    """One official review, not yet attributed to a reviewer."""

    paper_id: int
    rating: int
    confidence: int


@dataclass(slots=True)
class SourceData:
    """Normalized entity graph built from the source records."""

    papers: list[Paper] = field(default_factory=list)
    authors: list[str] = field(default_factory=list)
    reviews: list[Review] = field(default_factory=list)


class Operation(Enum):
    """Measured read operations; the value is the label used in reports."""

    READ_PAPER_LIST = "plist"

    def __str__(self) -> str:
        return self.value

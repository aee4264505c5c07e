"""OpenReview ingestion: submissions, decisions and reviews as typed entities."""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

import requests

from errors import ParseError, SourceFetchError
from models import Paper, Review, SourceData

# Public OpenReview notes endpoint (https://openreview.net/api/#/Notes/findNotes).
OPENREVIEW_NOTES_URL = os.getenv("OPENREVIEW_NOTES_URL", "https://openreview.net/notes")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "60"))
DEFAULT_SOURCE_URL = "https://openreview.net/group?id=ICLR.cc/2018/Conference"
DECISION_LIMIT = 10000
ACCEPT_PREFIX = "Accept"
# ASCII digits only: no sign, no underscores, no other Unicode digits.
LEADING_INT_RE = re.compile(r"[0-9]+")

LOGGER = logging.getLogger(__name__)

ReviewFetcher = Callable[[str, int], list[Any]]


class AuthorRegistry:
    """Assigns dense 0-based ids to author identities in first-seen order."""

    def __init__(self) -> None:
        self.identities: list[str] = []
        self._ids: dict[str, int] = {}

    def intern(self, identity: str) -> int:
        author_id = self._ids.get(identity)
        if author_id is None:
            author_id = len(self.identities)
            self._ids[identity] = author_id
            self.identities.append(identity)
            LOGGER.debug("Adding author: name=%s id=%s", identity, author_id)
        return author_id

    def __len__(self) -> int:
        return len(self.identities)


def conference_id(source_url: str) -> str:
    """Return the conference id carried in the ``id`` query parameter of a group URL."""
    values = parse_qs(urlparse(source_url).query).get("id")
    if not values or not values[0]:
        raise ParseError(f"Could not find conference id in source url: {source_url}")
    return values[0]


def fetch_submissions(conf: str, limit: int) -> list[Any]:
    return _get_notes(
        {"invitation": f"{conf}/-/Blind_Submission", "limit": limit},
        what="paper list",
    )


def fetch_decisions(conf: str) -> list[Any]:
    return _get_notes(
        {"invitation": f"{conf}/-/Acceptance_Decision", "limit": DECISION_LIMIT},
        what="acceptance list",
    )


def fetch_paper_reviews(conf: str, forum: str, number: int) -> list[Any]:
    return _get_notes(
        {"forum": forum, "invitation": f"{conf}/-/Paper{number}/Official_Review"},
        what="paper reviews",
    )


def _get_notes(params: dict[str, Any], what: str) -> list[Any]:
    """GET one notes query and return its ``notes`` array."""
    LOGGER.debug("Sending request for %s: params=%s", what, params)
    try:
        response = requests.get(OPENREVIEW_NOTES_URL, params=params, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as exc:
        raise SourceFetchError(f"Failed to fetch {what}: {exc}") from exc
    except ValueError as exc:
        raise SourceFetchError(f"Invalid {what} json: {exc}") from exc

    if not isinstance(payload, dict):
        raise SourceFetchError(f"Root of {what} is not a json object as expected")
    notes = payload.get("notes")
    if not isinstance(notes, list):
        raise SourceFetchError(f"{what.capitalize()} has a weird structure: missing notes array")
    return notes


def accepted_forums(decisions: list[Any]) -> set[str]:
    """Return the forum ids whose decision text starts with ``Accept``."""
    accepted: set[str] = set()
    for decision in decisions:
        if not isinstance(decision, dict):
            raise ParseError("Acceptance info is not a json object")
        forum = _require_str(decision.get("forum"), "acceptance forum")
        content = _require_dict(decision.get("content"), "acceptance info content")
        text = _require_str(content.get("decision"), "acceptance decision")
        if text.startswith(ACCEPT_PREFIX):
            LOGGER.debug("Noted acceptance decision: paper=%s", forum)
            accepted.add(forum)
    return accepted


def parse_leading_int(text: Any, field: str) -> int:
    """Parse the leading integer token of a free-text field such as ``"7: Good paper"``."""
    if not isinstance(text, str):
        raise ParseError(f"{field} wasn't a string")
    tokens = text.split()
    if not tokens:
        raise ParseError(f"{field} is empty")
    token = tokens[0].rstrip(":")
    if not LEADING_INT_RE.fullmatch(token):
        raise ParseError(f"{field} did not start with a non-negative number: {text!r}")
    return int(token)


def parse_review(note: Any, paper_id: int) -> Review:
    if not isinstance(note, dict):
        raise ParseError("Review was not an object")
    content = _require_dict(note.get("content"), "review contents")
    return Review(
        paper_id=paper_id,
        rating=parse_leading_int(content.get("rating"), "rating"),
        confidence=parse_leading_int(content.get("confidence"), "confidence"),
    )


def normalize_source(
    submissions: list[Any],
    decisions: list[Any],
    fetch_reviews: ReviewFetcher,
) -> SourceData:
    """Build the paper/author/review graph from raw OpenReview notes.

    Args:
        submissions: ``notes`` of the blind-submission listing.
        decisions: ``notes`` of the acceptance-decision listing.
        fetch_reviews: Called once per paper with its source id and number;
            returns that paper's official review notes.
    """
    accepted = accepted_forums(decisions)
    registry = AuthorRegistry()
    data = SourceData()

    LOGGER.debug("Processing paper list: n=%s", len(submissions))
    for note in submissions:
        if not isinstance(note, dict):
            raise ParseError("Paper info isn't a json object")
        forum = _require_str(note.get("id"), "paper id")
        number = note.get("number")
        if not isinstance(number, int) or isinstance(number, bool) or number < 0:
            raise ParseError(f"Paper number is weird for paper {forum}: {number!r}")
        content = _require_dict(note.get("content"), "paper content")
        title = _require_str(content.get("title"), "paper title")
        author_ids = content.get("authorids")
        if not isinstance(author_ids, list) or not author_ids:
            raise ParseError(f"Author list is not a non-empty array for paper {forum}")
        authors = tuple(registry.intern(_require_str(a, "author id")) for a in author_ids)

        paper = Paper(
            paper_id=len(data.papers) + 1,
            title=title,
            accepted=forum in accepted,
            authors=authors,
        )
        LOGGER.debug(
            "Adding paper: title=%s id=%s accepted=%s", title, paper.paper_id, paper.accepted
        )
        data.papers.append(paper)

        for review_note in fetch_reviews(forum, number):
            review = parse_review(review_note, paper.paper_id)
            LOGGER.debug("Adding review: rating=%s confidence=%s", review.rating, review.confidence)
            data.reviews.append(review)

    data.authors = registry.identities
    return data


def fetch_source(source_url: str, max_papers: int) -> SourceData:
    """Fetch and normalize the submissions, decisions and reviews of one conference."""
    conf = conference_id(source_url)
    LOGGER.info("Fetching source data: conf=%s", conf)

    submissions = fetch_submissions(conf, max_papers)
    decisions = fetch_decisions(conf)
    data = normalize_source(
        submissions,
        decisions,
        lambda forum, number: fetch_paper_reviews(conf, forum, number),
    )

    LOGGER.info(
        "Source fetch: papers=%s accepted=%s authors=%s reviews=%s",
        len(data.papers),
        sum(1 for p in data.papers if p.accepted),
        len(data.authors),
        len(data.reviews),
    )
    return data


def _require_str(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise ParseError(f"{field} is not a string: {value!r}")
    return value


def _require_dict(value: Any, field: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError(f"{field} is not a json object")
    return value

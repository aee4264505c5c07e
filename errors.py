"""Error taxonomy for the benchmark harness.

Every error is fatal: the harness aborts the run instead of benchmarking a
partially loaded or inconsistent platform.
"""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Base class for errors that abort a benchmark run."""


class SourceFetchError(HarnessError):
    """The external data source was unreachable or returned a malformed payload."""


class ParseError(HarnessError):
    """A required field was missing or did not have the expected shape."""


class PlatformError(HarnessError):
    """An administrative or query call on the target platform failed."""

"""Error taxonomy of the rollup engine.

Validation and configuration errors signal programmer or setup mistakes and
are never caught inside the pipeline. Fetch errors are transient and are the
only kind the recompute coordinator turns into an ``error`` state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rollup.domain.records import RecordKind


class RollupError(Exception):
    """Base class for engine errors."""


class ValidationError(RollupError):
    """Malformed filter specification or calculator input."""


class ConfigurationError(RollupError):
    """Unknown currency code, missing exchange rate, or bad static setup."""


class SourceFetchError(RollupError):
    """Record source query failed; wraps the underlying cause."""

    def __init__(self, cause: BaseException, *, kind: RecordKind | None = None, table: str | None = None) -> None:
        target = table or (f"{kind.value} records" if kind is not None else "records")
        super().__init__(f"Failed to fetch {target}: {cause}")
        self.kind = kind
        self.table = table
        self.cause = cause

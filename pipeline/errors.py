"""
Error taxonomy for the migration pipeline.

Only :class:`SourceUnavailable` is allowed to end a run. Everything else is
raised inside a single story's pipeline and caught at its boundary by the
driver, which logs it and counts the story as skipped or failed.
"""

from __future__ import annotations

from typing import Optional


class MigrationError(Exception):
    """Base class for pipeline errors."""


class ResolutionGap(MigrationError):
    """An author or brand could not be mapped to the destination."""

    def __init__(self, reason: str, *, story_id: Optional[int] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.story_id = story_id


class EnrichmentFailure(MigrationError):
    """The video prober or the title shortener failed for a story."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class WriteFailure(MigrationError):
    """An insert into the destination store failed."""

    def __init__(self, table: str, import_id: str, cause: BaseException) -> None:
        super().__init__(f"insert into {table} failed for import_id={import_id}: {cause}")
        self.table = table
        self.import_id = import_id
        self.__cause__ = cause


class SourceUnavailable(MigrationError):
    """A store could not be reached or the source cursor broke; the run stops."""

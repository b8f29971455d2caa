"""Error taxonomy shared by the fetch, ingest and derivative layers."""

from __future__ import annotations


class ClipvaultError(Exception):
    """Base class for errors raised by clipvault."""


class FetchError(ClipvaultError):
    """A request failed for good: retries exhausted or a non-retryable status."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RateLimitedError(FetchError):
    """The remote host kept answering 429 after every retry."""


class EmptyContentError(ClipvaultError):
    """A download finished with zero bytes."""


class DuplicateContentError(ClipvaultError):
    """Byte-identical content already exists for the same owner."""

    def __init__(self, existing_id: str):
        super().__init__(f"duplicate of existing asset {existing_id}")
        self.existing_id = existing_id


class InvalidJobTransition(ClipvaultError):
    """An ingest job was asked to move to a state it cannot reach."""


__all__ = [
    "ClipvaultError",
    "FetchError",
    "RateLimitedError",
    "EmptyContentError",
    "DuplicateContentError",
    "InvalidJobTransition",
]

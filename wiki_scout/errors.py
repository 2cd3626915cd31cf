"""Exception hierarchy shared by the crawler and the search stack."""
from __future__ import annotations

__all__ = (
    "WikiScoutError",
    "InvalidURL",
    "FetchFailure",
    "EmbeddingError",
    "EmbeddingDimensionMismatch",
    "EmbeddingUnavailable",
    "EmbeddingTimeout",
    "IndexQueryFailure",
)


class WikiScoutError(Exception):
    """Base class for all project errors."""

    retryable: bool = False


class InvalidURL(WikiScoutError, ValueError):
    """The input could not be parsed as an http(s) URL."""

    def __init__(self, url: object, reason: str = "cannot parse URL") -> None:
        super().__init__(f"{reason}: {url!r}")
        self.url = url
        self.reason = reason


class FetchFailure(WikiScoutError):
    """Network or parse error while crawling a single page."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


class EmbeddingError(WikiScoutError):
    """Base class for query embedding problems."""


class EmbeddingDimensionMismatch(EmbeddingError):
    """The embedding backend returned a vector of the wrong length."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"invalid embedding dimensions: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EmbeddingUnavailable(EmbeddingError):
    """The embedding backend could not be initialized or called."""


class EmbeddingTimeout(EmbeddingUnavailable):
    """An embedding call did not finish in time."""

    retryable = True


class IndexQueryFailure(WikiScoutError):
    """The document index failed to answer a query."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path

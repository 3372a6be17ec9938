"""
Error taxonomy
==============

Every failure the retrieval engine raises on purpose derives from
:class:`EngramError`. "Not found" is never an exception: absent anchors and
collections come back as ``found=False`` / ``None``.
"""

from __future__ import annotations


class EngramError(Exception):
    """Base class for retrieval engine errors."""


class ProviderUnavailable(EngramError):
    """An embedding or vector back-end is unreachable or unhealthy."""


class DimensionMismatch(EngramError):
    """A vector's length disagrees with its collection's declared dimension."""

    def __init__(self, expected: int, actual: int, collection: str | None = None):
        self.expected = expected
        self.actual = actual
        self.collection = collection
        where = f" for collection '{collection}'" if collection else ""
        super().__init__(f"Expected vector of dim {expected}{where}, got {actual}")


class ParseError(EngramError):
    """A remote back-end returned a malformed response, or a local asset is corrupt."""


class QueryError(EngramError):
    """The keyword engine rejected a query even after sanitization."""


__all__ = [
    "EngramError",
    "ProviderUnavailable",
    "DimensionMismatch",
    "ParseError",
    "QueryError",
]

"""Errors raised while turning one reader-site book into an EPUB.

Every error here is scoped to a single book: the orchestrator reports it and
moves on to the next URL.
"""


class BookError(Exception):
    """Base class for failures that abort one book."""


class InvalidBookUrl(BookError):
    pass


class NetworkError(BookError):
    pass


class ParseError(BookError):
    pass


class CacheError(BookError):
    pass


class CacheMiss(CacheError):
    pass


class PackagingError(BookError):
    pass

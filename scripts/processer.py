import os
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from bookcache import BookCache
from downloader import (DEFAULT_TIMEOUT, UA, book_identity, fetch_manifest,
                        fetch_resources, make_session)
from epubber import create_epub
from errors import BookError
from reformat import DEFAULT_SELECTOR

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    cache_dir: Path = Path("cache")
    output_dir: Path = Path("library")
    selector: str = DEFAULT_SELECTOR
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = UA

    @classmethod
    def from_env(cls, environ=None):
        """Settings with ``EPUBEE_*`` environment variables applied over the defaults."""
        env = os.environ if environ is None else environ
        settings = cls()
        if env.get("EPUBEE_CACHE_DIR"):
            settings.cache_dir = Path(env["EPUBEE_CACHE_DIR"])
        if env.get("EPUBEE_OUTPUT_DIR"):
            settings.output_dir = Path(env["EPUBEE_OUTPUT_DIR"])
        if env.get("EPUBEE_SELECTOR"):
            settings.selector = env["EPUBEE_SELECTOR"]
        if env.get("EPUBEE_USER_AGENT"):
            settings.user_agent = env["EPUBEE_USER_AGENT"]
        if env.get("EPUBEE_TIMEOUT"):
            try:
                settings.timeout = float(env["EPUBEE_TIMEOUT"])
            except ValueError:
                raise ValueError(f"EPUBEE_TIMEOUT must be a number, got {env['EPUBEE_TIMEOUT']!r}") from None
        return settings


@dataclass
class BookResult:
    url: str
    path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self):
        return self.path is not None


def from_url(base_url, cache, session, settings, progress=None):
    """Mirror one book through the cache and package it. Returns the EPUB path."""
    identity = book_identity(base_url)
    manifest = fetch_manifest(identity, cache, session, settings.timeout)
    records = fetch_resources(identity, manifest.items, cache, session,
                              selector=settings.selector, timeout=settings.timeout,
                              progress=progress)
    return create_epub(settings.output_dir, manifest.title, manifest.author,
                       manifest.opf, records, fallback_title=identity.id)


def process_urls(urls, settings=None, cache=None, session=None, progress=None) -> List[BookResult]:
    """
    Process each URL in order. A failing book is logged and recorded, then the
    next one starts; only the cache is shared between books.
    """
    settings = settings or Settings()
    cache = cache or BookCache(settings.cache_dir)
    own_session = session is None
    if own_session:
        session = make_session(settings.user_agent)

    results = []
    try:
        for url in urls:
            try:
                path = from_url(url, cache, session, settings, progress)
            except BookError as e:
                logger.error("Failed %s: %s", url, e)
                results.append(BookResult(url, error=str(e)))
            except Exception as e:
                logger.exception("Unexpected error while processing %s", url)
                results.append(BookResult(url, error=f"{type(e).__name__}: {e}"))
            else:
                results.append(BookResult(url, path=path))
    finally:
        if own_session:
            session.close()
    return results


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python processer.py <book_url> [<book_url> ...]")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    results = process_urls(sys.argv[1:], Settings.from_env())
    sys.exit(0 if all(r.ok for r in results) else 1)

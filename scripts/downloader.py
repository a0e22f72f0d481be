import sys
import logging
import requests
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlparse

from bookcache import BookCache, cache_key
from errors import InvalidBookUrl, NetworkError, ParseError
from reformat import DEFAULT_SELECTOR, rewrite_html

logger = logging.getLogger(__name__)

UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/76.0.3809.100 Safari/537.36"
)
DEFAULT_TIMEOUT = 60

OPF_NAME = "content.opf"
XHTML_TYPE = "application/xhtml+xml"

NS = {'opf': 'http://www.idpf.org/2007/opf',
      'dc': 'http://purl.org/dc/elements/1.1/'}

ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class BookIdentity:
    id: str
    base_url: str


@dataclass(frozen=True)
class ManifestItem:
    href: str
    media_type: str


@dataclass
class Manifest:
    """Parsed package document plus the raw bytes it was parsed from."""
    title: str
    author: str
    items: List[ManifestItem]
    opf: bytes


@dataclass
class ResourceRecord:
    path: str
    content: bytes


def book_identity(url):
    """
    Derive the book identity from a reader URL such as
    ``http://host/books/mobile/5f/<bookId>/``.

    The id is the path segment after the shard that follows ``mobile/``;
    URLs without a shard use the single segment after ``mobile/``.
    """
    path = urlparse(url).path
    if "mobile/" not in path:
        raise InvalidBookUrl(f"Not a reader book URL (no 'mobile/' segment): {url}")
    segments = [s for s in path.split("mobile/", 1)[1].split("/") if s]
    if not segments:
        raise InvalidBookUrl(f"No book id after 'mobile/' in {url}")
    book_id = segments[1] if len(segments) > 1 else segments[0]
    base_url = url if url.endswith("/") else url + "/"
    return BookIdentity(id=book_id, base_url=base_url)


def make_session(user_agent=UA):
    session = requests.Session()
    session.headers["User-Agent"] = user_agent
    return session


def fetch_or_read(cache: BookCache, session, key, url, timeout=DEFAULT_TIMEOUT):
    """Return the cached bytes for ``key``, downloading ``url`` into the cache on a miss."""
    if cache.has(key):
        logger.debug("Cache hit: %s", key)
        return cache.get(key)

    logger.debug("Fetching %s", url)
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise NetworkError(f"Failed to download {url}: {e}") from e
    content = response.content
    cache.put(key, content)
    return content


def _local_name(tag):
    return tag.rsplit("}", 1)[-1]


def _first_text(root, path):
    elem = root.find(path, NS)
    if elem is None or elem.text is None:
        return ""
    return elem.text.strip()


def parse_opf(opf):
    """Extract title, author and the ordered manifest from package document bytes."""
    try:
        root = ET.fromstring(opf)
    except ET.ParseError as e:
        raise ParseError(f"Could not parse package document: {e}") from e

    if _local_name(root.tag) != "package":
        raise ParseError(f"Expected <package> root, got <{_local_name(root.tag)}>")

    title = _first_text(root, './/dc:title')
    author = _first_text(root, './/dc:creator')

    items = []
    for section in root:
        if _local_name(section.tag) != "manifest":
            continue
        for item in section:
            if _local_name(item.tag) != "item":
                continue
            href = item.get("href")
            media_type = item.get("media-type")
            if not href or not media_type:
                logger.debug("Skipping malformed manifest item %s", item.attrib)
                continue
            items.append(ManifestItem(href=href, media_type=media_type))
    return title, author, items


def fetch_manifest(identity: BookIdentity, cache: BookCache, session, timeout=DEFAULT_TIMEOUT) -> Manifest:
    key = cache_key(identity.id, OPF_NAME)
    opf = fetch_or_read(cache, session, key, identity.base_url + OPF_NAME, timeout)
    title, author, items = parse_opf(opf)
    logger.info("%s: '%s' by '%s', %d manifest items", identity.id, title, author, len(items))
    return Manifest(title=title, author=author, items=items, opf=opf)


def fetch_resource(identity: BookIdentity, item: ManifestItem, cache: BookCache, session,
                   selector=DEFAULT_SELECTOR, timeout=DEFAULT_TIMEOUT) -> ResourceRecord:
    key = cache_key(identity.id, item.href)
    url = urljoin(identity.base_url, item.href)
    content = fetch_or_read(cache, session, key, url, timeout)

    if item.media_type == XHTML_TYPE:
        rewritten = rewrite_html(content, selector)
        if rewritten != content:
            # Store the cleaned page so later runs skip both download and rewrite
            cache.put(key, rewritten)
            logger.debug("Rewrote %s", key)
            content = rewritten

    return ResourceRecord(path=item.href, content=content)


def fetch_resources(identity: BookIdentity, items: List[ManifestItem], cache: BookCache, session,
                    selector=DEFAULT_SELECTOR, timeout=DEFAULT_TIMEOUT,
                    progress: Optional[ProgressCallback] = None) -> List[ResourceRecord]:
    """Resolve every manifest item in manifest order, one at a time."""
    records = []
    total = len(items)
    for i, item in enumerate(items, 1):
        if progress is not None:
            progress(i, total, item.href)
        records.append(fetch_resource(identity, item, cache, session, selector, timeout))
    return records


def download_book(cache_dir, base_url):
    """Mirror a book's package document and resources into ``cache_dir`` without packaging."""
    identity = book_identity(base_url)
    cache = BookCache(cache_dir)
    with make_session() as session:
        manifest = fetch_manifest(identity, cache, session)
        fetch_resources(identity, manifest.items, cache, session,
                        progress=lambda i, n, href: print(f"Downloading {i}/{n}: {href}"))
    print(f"\nDownload complete! Files saved in: {cache.root / identity.id}")
    return identity


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python downloader.py <book_url> [cache_dir]")
        sys.exit(1)

    cache_dir = sys.argv[2] if len(sys.argv) > 2 else "cache"
    download_book(cache_dir, sys.argv[1])

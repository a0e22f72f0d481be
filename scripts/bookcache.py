import os
import logging
import tempfile
import threading
from pathlib import Path, PurePosixPath

from errors import CacheError, CacheMiss

logger = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"
# NamedTemporaryFile creates 0600 files; cached pages are ordinary readable files
FILE_MODE = 0o644
LOCK_STRIPES = 64


def cache_key(book_id, href):
    """Key under which a book's file is mirrored, e.g. ``abc123/content.opf``"""
    return f"{book_id}/{href}"


class BookCache:
    """
    Durable key -> bytes store kept as a plain directory mirror.

    Each key is a relative posix path below ``root``. Values are written to a
    temporary sibling and renamed into place, so a key that exists on disk
    always holds a complete value.
    """

    def __init__(self, root):
        self.root = Path(root)
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _path(self, key):
        parts = PurePosixPath(key).parts
        if not key or key.startswith("/") or not parts or ".." in parts:
            raise CacheError(f"Invalid cache key: {key!r}")
        return self.root.joinpath(*parts)

    def _lock(self, key):
        return self._locks[hash(key) % LOCK_STRIPES]

    def has(self, key):
        return self._path(key).is_file()

    def get(self, key):
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise CacheMiss(f"Not cached: {key}") from None
        except OSError as e:
            raise CacheError(f"Could not read {key} from cache: {e}") from e

    def put(self, key, data):
        path = self._path(key)
        with self._lock(key):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp_handle = tempfile.NamedTemporaryFile(
                    prefix=f".{path.name}.",
                    suffix=TMP_SUFFIX,
                    dir=path.parent,
                    delete=False,
                )
            except OSError as e:
                raise CacheError(f"Could not write {key} to cache: {e}") from e
            try:
                with tmp_handle as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.chmod(tmp_handle.name, FILE_MODE)
                os.replace(tmp_handle.name, path)
            except OSError as e:
                Path(tmp_handle.name).unlink(missing_ok=True)
                raise CacheError(f"Could not write {key} to cache: {e}") from e
        logger.debug("Cached %s (%d bytes)", key, len(data))

    def keys(self, prefix=""):
        """Committed keys below ``prefix``, sorted."""
        if not self.root.exists():
            return []
        found = []
        for f in self.root.glob('**/*'):
            if not f.is_file():
                continue
            if f.name.startswith(".") and f.name.endswith(TMP_SUFFIX):
                continue
            key = f.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)

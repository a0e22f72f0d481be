import os
import re
import sys
import logging
import zipfile
import tempfile
from pathlib import Path

from bookcache import FILE_MODE, BookCache, cache_key
from downloader import OPF_NAME, ResourceRecord, parse_opf
from errors import CacheError, PackagingError

logger = logging.getLogger(__name__)

MIMETYPE = b'application/epub+zip'

CONTAINER_XML = b'''<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>'''

# Fixed entry timestamp so the same inputs always give the same archive bytes
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def clean_filename_part(text):
    return re.sub(r'[\\/*?:"<>|]', '_', text.strip())


def epub_filename(title, author, fallback="book"):
    title = clean_filename_part(title) or fallback
    author = clean_filename_part(author)
    return f"{title} - {author}.epub"


def _write_entry(epub, name, data):
    info = zipfile.ZipInfo(name, date_time=ZIP_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    epub.writestr(info, data, compresslevel=9)


def epub_entries(opf, records):
    """
    Archive entries in the order they are written: mimetype,
    META-INF/container.xml, content.opf, then resources in manifest order.

    A resource href listed twice in the manifest is only written once.
    """
    entries = [('mimetype', MIMETYPE),
               ('META-INF/container.xml', CONTAINER_XML),
               ('content.opf', opf)]
    seen = {name for name, _ in entries}
    for record in records:
        if record.path in seen:
            logger.warning("Skipping duplicate archive entry %s", record.path)
            continue
        seen.add(record.path)
        entries.append((record.path, record.content))
    return entries


def create_epub(output_dir, title, author, opf, records, fallback_title="book"):
    """
    Package an EPUB named ``{title} - {author}.epub`` inside ``output_dir``.

    The archive is written to a temporary file next to the target and renamed
    into place once complete. Returns the path of the finished EPUB.
    """
    output_dir = Path(output_dir)
    epub_path = output_dir / epub_filename(title, author, fallback_title)

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        tmp_handle = tempfile.NamedTemporaryFile(
            prefix=".epub-",
            suffix=".part",
            dir=output_dir,
            delete=False,
        )
        tmp_handle.close()
    except OSError as e:
        raise PackagingError(f"Could not prepare {epub_path}: {e}") from e

    tmp_path = Path(tmp_handle.name)
    try:
        with zipfile.ZipFile(tmp_path, 'w', zipfile.ZIP_DEFLATED) as epub:
            for name, data in epub_entries(opf, records):
                _write_entry(epub, name, data)
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, epub_path)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        tmp_path.unlink(missing_ok=True)
        raise PackagingError(f"Could not write {epub_path}: {e}") from e

    logger.info("Created EPUB %s", epub_path)
    return epub_path


def repackage(book_dir, output_dir):
    """Package an already mirrored book directory (``cache/<bookId>``) again."""
    book_dir = Path(book_dir)
    cache = BookCache(book_dir.parent)
    book_id = book_dir.name

    try:
        opf = cache.get(cache_key(book_id, OPF_NAME))
        title, author, items = parse_opf(opf)
        records = [ResourceRecord(item.href, cache.get(cache_key(book_id, item.href)))
                   for item in items]
    except CacheError as e:
        raise PackagingError(f"Cannot repackage {book_dir}: {e}") from e
    return create_epub(output_dir, title, author, opf, records, fallback_title=book_dir.name)


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print("Usage: python epubber.py <cache/bookId> [output_dir]")
        sys.exit(1)

    output_dir = sys.argv[2] if len(sys.argv) > 2 else 'library'
    print(f"Successfully created EPUB: {repackage(sys.argv[1], output_dir)}")

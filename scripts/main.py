import sys
import logging
import argparse
from pathlib import Path

from processer import Settings, process_urls

QUIT = "q"


def read_urls(stream=None, prompt=True):
    """Yield URLs typed one per line until ``q`` or end of input."""
    stream = stream or sys.stdin
    while True:
        if prompt:
            print(f"Book URL ('{QUIT}' to quit): ", end="", flush=True)
        line = stream.readline()
        if not line:
            return
        url = line.strip()
        if url == QUIT:
            return
        if url:
            yield url


def print_progress(index, total, href):
    print(f"Downloading {index}/{total}: {href}")


def build_parser():
    parser = argparse.ArgumentParser(description="Download reader-site books as EPUB files")
    parser.add_argument("urls", nargs="*", help="Book URLs; prompts for them when omitted")
    parser.add_argument("--output-dir", type=Path, help="Where finished EPUBs are written")
    parser.add_argument("--cache-dir", type=Path, help="Local mirror of downloaded book files")
    parser.add_argument("--selector", help="CSS selector of the reader page's content node")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None, stdin=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    settings = Settings.from_env()
    if args.output_dir:
        settings.output_dir = args.output_dir
    if args.cache_dir:
        settings.cache_dir = args.cache_dir
    if args.selector:
        settings.selector = args.selector

    urls = args.urls or read_urls(stdin)
    results = process_urls(urls, settings, progress=print_progress)

    for result in results:
        if result.ok:
            print(f"Successfully created EPUB: {result.path}")
        else:
            print(f"Failed {result.url}: {result.error}")
    return 0 if all(r.ok for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())

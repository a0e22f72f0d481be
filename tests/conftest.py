from __future__ import annotations

import pytest
import requests

BOOK_URL = "http://reader.example.com/books/mobile/5f/abc123/"

OPF = b"""<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Foo</dc:title>
    <dc:creator>Bar</dc:creator>
  </metadata>
  <manifest>
    <item id="chap1" href="chap1.xhtml" media-type="application/xhtml+xml"/>
    <item id="cover" href="cover.jpg" media-type="image/jpeg"/>
  </manifest>
  <spine>
    <itemref idref="chap1"/>
  </spine>
</package>
"""

CHAPTER = b"""<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Chapter 1</title></head>
<body><div class="reader-nav">Next</div><div class="readercontent-inner"><p>Hello</p></div><div class="footer">ads</div></body>
</html>"""

COVER = b"\xff\xd8\xff\xe0fake-jpeg\x00\x01"


class FakeResponse:
    def __init__(self, url: str, content: bytes | None):
        self.url = url
        self.content = content
        self.status_code = 404 if content is None else 200

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} for {self.url}")


class FakeSession:
    """Stands in for ``requests.Session``: serves ``pages`` and records requested URLs."""

    def __init__(self, pages: dict[str, bytes]):
        self.pages = dict(pages)
        self.requests: list[str] = []
        self.closed = False

    def get(self, url: str, timeout=None) -> FakeResponse:
        self.requests.append(url)
        return FakeResponse(url, self.pages.get(url))

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def book_pages(base_url: str = BOOK_URL) -> dict[str, bytes]:
    return {
        base_url + "content.opf": OPF,
        base_url + "chap1.xhtml": CHAPTER,
        base_url + "cover.jpg": COVER,
    }


@pytest.fixture
def session() -> FakeSession:
    return FakeSession(book_pages())

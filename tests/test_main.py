from __future__ import annotations

import io
from pathlib import Path

import main
import processer

from conftest import BOOK_URL, FakeSession, book_pages


def test_read_urls_stops_at_quit() -> None:
    stream = io.StringIO(f"{BOOK_URL}\n\n  http://h/mobile/1/b/  \nq\nhttp://never/\n")
    assert list(main.read_urls(stream, prompt=False)) == [BOOK_URL, "http://h/mobile/1/b/"]


def test_read_urls_stops_at_end_of_input() -> None:
    assert list(main.read_urls(io.StringIO("http://h/mobile/1/a/"), prompt=False)) == ["http://h/mobile/1/a/"]


def _fake_sessions(monkeypatch) -> FakeSession:
    session = FakeSession(book_pages())
    monkeypatch.setattr(processer, "make_session", lambda user_agent: session)
    return session


def test_main_processes_arguments(tmp_path: Path, monkeypatch, capsys) -> None:
    _fake_sessions(monkeypatch)

    code = main.main([BOOK_URL, "--output-dir", str(tmp_path / "out"), "--cache-dir", str(tmp_path / "cache")])

    assert code == 0
    assert (tmp_path / "out" / "Foo - Bar.epub").exists()
    out = capsys.readouterr().out
    assert "Downloading 1/2: chap1.xhtml" in out
    assert "Successfully created EPUB" in out


def test_main_prompts_when_no_arguments(tmp_path: Path, monkeypatch, capsys) -> None:
    session = _fake_sessions(monkeypatch)
    stdin = io.StringIO(f"http://reader.example.com/nothing/\n{BOOK_URL}\nq\n")

    code = main.main(["--output-dir", str(tmp_path / "out"), "--cache-dir", str(tmp_path / "cache")], stdin=stdin)

    assert code == 1
    assert (tmp_path / "out" / "Foo - Bar.epub").exists()
    assert session.requests[0] == BOOK_URL + "content.opf"
    out = capsys.readouterr().out
    assert "Failed http://reader.example.com/nothing/" in out


def test_main_uses_environment_settings(tmp_path: Path, monkeypatch) -> None:
    _fake_sessions(monkeypatch)
    monkeypatch.setenv("EPUBEE_OUTPUT_DIR", str(tmp_path / "env-out"))
    monkeypatch.setenv("EPUBEE_CACHE_DIR", str(tmp_path / "env-cache"))

    assert main.main([BOOK_URL]) == 0
    assert (tmp_path / "env-out" / "Foo - Bar.epub").exists()
    assert (tmp_path / "env-cache" / "abc123" / "content.opf").exists()

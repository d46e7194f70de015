import os

import pytest

from tagflow.tagflow_datatypes import ValueNotFound, ValueShapeError
from tagflow.tagflow_fs import FileDownloader, FileOpener, resolve_path, uniquify


def test_resolve_path(tmp_path):
    assert resolve_path("a/../b.txt", str(tmp_path)) == str(tmp_path / "b.txt")
    assert resolve_path("/x/./y", None) == os.path.normpath("/x/y")
    assert resolve_path("~", None) == os.path.expanduser("~")


def test_uniquify(tmp_path):
    target = tmp_path / "report.txt"
    assert uniquify(str(target)) == str(target)
    target.write_text("")
    assert uniquify(str(target)) == str(tmp_path / "report (1).txt")
    (tmp_path / "report (1).txt").write_text("")
    assert uniquify(str(target)) == str(tmp_path / "report (2).txt")


@pytest.mark.asyncio
async def test_downloader_writes_unique_files(tmp_path):
    downloader = FileDownloader(str(tmp_path))
    first = await downloader("notes.md", "# one", "text/markdown")
    second = await downloader("../notes.md", "# two", "text/markdown")
    assert first == str(tmp_path / "notes.md")
    assert second == str(tmp_path / "notes (1).md")
    assert (tmp_path / "notes (1).md").read_text(encoding="utf-8") == "# two"


@pytest.mark.asyncio
async def test_downloader_rejects_empty_names(tmp_path):
    with pytest.raises(ValueShapeError):
        await FileDownloader(str(tmp_path))("dir/", "x")


@pytest.mark.asyncio
async def test_opener(tmp_path):
    (tmp_path / "a.txt").write_text("hello", encoding="utf-8")
    opener = FileOpener(str(tmp_path))
    assert await opener("a.txt") == "hello"
    assert await opener("a.txt", ["TXT"]) == "hello"
    with pytest.raises(ValueShapeError):
        await opener("a.txt", [".json"])
    with pytest.raises(ValueNotFound, match="File not found: b.txt"):
        await opener("b.txt")

from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

from tagflow.tagflow_datatypes import ValueNotFound, ValueShapeError

logger = logging.getLogger(__name__)


def resolve_path(path: str, base_dir: Optional[str]) -> str:
    # Home directory
    if path.startswith("~"):
        return os.path.expanduser(path)
    # Absolute filesystem root
    if os.path.isabs(path):
        return os.path.normpath(path)
    # Default: relative to the base directory (or CWD)
    return os.path.normpath(os.path.join(base_dir or os.getcwd(), path))


def uniquify(path: str) -> str:
    """`report.txt` -> `report (1).txt` -> `report (2).txt` ... until unused."""
    if not os.path.exists(path):
        return path
    stem, ext = os.path.splitext(path)
    n = 1
    while os.path.exists(f"{stem} ({n}){ext}"):
        n += 1
    return f"{stem} ({n}){ext}"


def _write_text(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


class FileDownloader:
    """The downloader capability: saves content into a download directory."""

    def __init__(self, download_dir: Optional[str] = None):
        self.download_dir = download_dir or os.getcwd()

    async def __call__(self, filename: str, content: str, mime_type: str = "text/plain") -> str:
        name = os.path.basename(filename)
        if not name or name in (".", ".."):
            raise ValueShapeError(f"Invalid file name: {filename!r}")
        path = uniquify(os.path.join(self.download_dir, name))
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write_text, path, content)
        logger.info("Saved %s (%s) to %s", filename, mime_type, path)
        return path


class FileOpener:
    """The file opener capability: reads a text file, optionally restricted by extension."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir

    async def __call__(self, path: str, extensions: Optional[List[str]] = None) -> str:
        full = resolve_path(path, self.base_dir)
        if extensions:
            ext = os.path.splitext(full)[1].lower()
            allowed = [e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions]
            if ext not in allowed:
                raise ValueShapeError(f"File {path} does not have one of the extensions {', '.join(allowed)}")
        if not os.path.isfile(full):
            raise ValueNotFound(path, f"File not found: {path}")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _read_text, full)

"""
FileSystem abstraction for EnergyForecast.

PURPOSE: Injectable durable-storage interface for the response cache.
AI CONTEXT: The cache slot is the only file this package writes. Tests swap
in an in-memory implementation instead of touching disk.

DESIGN:
- FileSystem protocol covers exactly what PersistentCache needs
- RealFileSystem writes via a sibling temp file + os.replace
- tests/conftest.py provides MockFileSystem with read-only simulation

USAGE:
    # Production
    cache = PersistentCache(filesystem=RealFileSystem())

    # Tests
    cache = PersistentCache(storage_dir="/test", filesystem=MockFileSystem())
"""

from __future__ import annotations

import os
from typing import Protocol

__all__ = ["FileSystem", "RealFileSystem"]


class FileSystem(Protocol):
    """
    Storage operations behind the persisted cache slot.

    Business context: The slot survives dashboard restarts, so a freshly
    started dashboard shows the last viewed periods without waiting on the
    provider API.
    """

    def makedirs(self, path: str, exist_ok: bool = False) -> None:
        """
        Create the storage directory and its parents.

        Raises:
            OSError: If path exists and exist_ok is False.
        """
        ...

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        """
        Return the slot's serialized JSON.

        Raises:
            FileNotFoundError: No slot written yet.
        """
        ...

    def write_text(self, path: str, content: str, encoding: str = "utf-8") -> None:
        """
        Replace the slot's contents.

        Raises:
            PermissionError: Storage directory or slot is read-only.
        """
        ...


class RealFileSystem:
    """
    Disk-backed FileSystem.

    write_text goes through a sibling temp file and os.replace, so a crash
    mid-write leaves either the old or the new slot, never a truncated one.
    """

    def makedirs(self, path: str, exist_ok: bool = False) -> None:
        os.makedirs(path, exist_ok=exist_ok)

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        with open(path, encoding=encoding) as f:
            return f.read()

    def write_text(self, path: str, content: str, encoding: str = "utf-8") -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding=encoding) as f:
            f.write(content)
        os.replace(tmp_path, path)

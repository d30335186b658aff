"""Data sources for files placed in a disk image."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO


@dataclass(frozen=True)
class FileSource:
    """Contents taken from a file on the host file system."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))

    def size(self) -> int:
        return self.path.stat().st_size

    def copy_to(self, target: BinaryIO) -> None:
        with self.path.open("rb") as src:
            shutil.copyfileobj(src, target)

    def __repr__(self) -> str:
        return f"data source: File {self.path}"


@dataclass(frozen=True)
class DataSource:
    """Contents held in memory."""

    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))

    def size(self) -> int:
        return len(self.data)

    def copy_to(self, target: BinaryIO) -> None:
        target.write(self.data)

    def __repr__(self) -> str:
        return f"data source: {len(self.data)} raw bytes "
"""Builds FAT boot partitions holding the kernel and other boot files."""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Mapping, Union

from .fatvol import FatError, FatVolume, format_volume
from .sources import DataSource, FileSource

KERNEL_FILE_NAME = "kernel-x86_64"
DEFAULT_LABEL = b"MY_RUST_OS!"
_MB = 1024 * 1024
_LABEL_LEN = 11

Source = Union[FileSource, DataSource]


def volume_label(files: Mapping[str, Source]) -> bytes:
    """Volume label derived from the kernel file name, or the default label."""
    source = files.get(KERNEL_FILE_NAME)
    if isinstance(source, FileSource):
        stem = source.path.stem
        if stem:
            return stem.encode("utf-8", "replace")[:_LABEL_LEN].ljust(_LABEL_LEN, b"\0")
    return DEFAULT_LABEL


def create_fat_filesystem(files: Mapping[str, Source], out_fat_path: str | os.PathLike) -> None:
    """Create a FAT image at ``out_fat_path`` that contains the given files."""
    try:
        needed = sum(source.size() for source in files.values())
    except OSError as exc:
        raise FatError(f"failed to read size of source data: {exc}") from exc

    size = ((needed + 1024 * 64 - 1) // _MB + 1) * _MB + _MB
    path = Path(out_fat_path)
    with path.open("wb") as fh:
        fh.truncate(size)

    try:
        format_volume(path, volume_label(files))
    except FatError as exc:
        raise FatError(f"Failed to format FAT file: {exc}") from exc
    with FatVolume.open(path) as volume:
        add_files_to_image(volume, files)


def _components(target: str) -> list[str]:
    return [part for part in target.replace("\\", "/").split("/") if part]


def add_files_to_image(volume: FatVolume, files: Mapping[str, Source]) -> None:
    """Copy the files into an open volume, creating parent directories as needed."""
    for target, source in sorted(files.items()):
        parts = _components(target)
        for depth in range(1, len(parts)):
            directory = "/".join(parts[:depth])
            try:
                volume.create_dir(directory)
            except FatError as exc:
                raise FatError(
                    f"failed to create directory `{directory}` on FAT filesystem: {exc}"
                ) from exc

        buffer = io.BytesIO()
        try:
            source.copy_to(buffer)
        except OSError as exc:
            raise FatError(
                f"failed to copy source data `{source!r}` to file at `{target}`: {exc}"
            ) from exc
        try:
            volume.create_file(target, buffer.getvalue())
        except FatError as exc:
            raise FatError(f"failed to create file at `{target}`: {exc}") from exc
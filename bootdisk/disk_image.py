"""Single-stage disk images built from a bootloader ELF and a kernel binary."""

from __future__ import annotations

import os
import shutil
import struct
import subprocess
from pathlib import Path

from .fat import KERNEL_FILE_NAME
from .fatvol import FatError, FatVolume, format_volume

BLOCK_SIZE = 512
_MB = 1024 * 1024
_BOOT_LABEL = b"BOOT       "
_PARTITION_HEADER = bytes([0x80, 0, 0, 0, 0x04, 0, 0, 0])


class DiskImageError(Exception):
    """Creating the disk image failed."""


class ObjcopyNotFoundError(DiskImageError):
    """The ``llvm-objcopy`` executable could not be found."""

    def __init__(self) -> None:
        super().__init__(
            "Could not find `llvm-objcopy`.\n\n"
            "Install the LLVM tools and make sure `llvm-objcopy` is on the PATH."
        )


class ObjcopyFailedError(DiskImageError):
    """``llvm-objcopy`` exited with an error."""

    def __init__(self, stderr: bytes) -> None:
        self.stderr = bytes(stderr)
        super().__init__(f"Failed to run `llvm-objcopy`: {self.stderr.decode('utf-8', 'replace')}")


def _io_error(message: str, exc: OSError) -> DiskImageError:
    return DiskImageError(f"I/O error: {message}:\n{exc}")


def _create_kernel_fat(fat_path: Path, size: int, kernel: Path) -> None:
    try:
        with fat_path.open("wb") as fh:
            fh.truncate(size)
    except OSError as exc:
        raise DiskImageError(f"Failed to create UEFI FAT file: {exc}") from exc
    try:
        format_volume(fat_path, _BOOT_LABEL)
    except (FatError, OSError) as exc:
        raise DiskImageError(f"Failed to format UEFI FAT file: {exc}") from exc
    try:
        with FatVolume.open(fat_path) as volume:
            volume.create_file(KERNEL_FILE_NAME, kernel.read_bytes())
    except (FatError, OSError) as exc:
        raise DiskImageError(f"Failed to copy kernel to UEFI FAT file: {exc}") from exc


def create_disk_image(bootloader_elf_path: str | os.PathLike, output_bin_path: str | os.PathLike,
                      kernel_binary: str | os.PathLike) -> None:
    """Convert the bootloader to a flat boot sector and append the kernel after it.

    A FAT image holding the kernel is written next to the output with a ``.fat`` suffix.
    """
    objcopy = shutil.which("llvm-objcopy")
    if objcopy is None:
        raise ObjcopyNotFoundError()
    output = Path(output_bin_path)
    kernel = Path(kernel_binary)

    command = [objcopy, "-I", "elf64-x86-64", "-O", "binary",
               "--binary-architecture=i386:x86-64", str(bootloader_elf_path), str(output)]
    try:
        result = subprocess.run(command, capture_output=True)
    except OSError as exc:
        raise _io_error("failed to execute llvm-objcopy command", exc) from exc
    if result.returncode != 0:
        raise ObjcopyFailedError(result.stderr or b"")

    try:
        file_size = output.stat().st_size
    except OSError as exc:
        raise _io_error("failed to get size of boot image", exc) from exc
    if file_size != BLOCK_SIZE:
        raise DiskImageError(f"boot image must be {BLOCK_SIZE} bytes, but is {file_size} bytes")

    try:
        kernel_size = kernel.stat().st_size
    except OSError as exc:
        raise DiskImageError(f"failed to read metadata of kernel binary: {exc}") from exc

    fat_size = ((kernel_size + 1024 * 64 - 1) // _MB + 1) * _MB
    _create_kernel_fat(output.with_suffix(".fat"), fat_size, kernel)

    size_sectors = fat_size // BLOCK_SIZE
    if size_sectors > 0xFFFF_FFFF:
        raise DiskImageError("FAT partition is too large for an MBR partition entry")
    entry = _PARTITION_HEADER + struct.pack("<II", 1, size_sectors)
    try:
        with output.open("r+b") as disk, kernel.open("rb") as src:
            disk.seek(446)
            disk.write(entry)
            disk.seek(BLOCK_SIZE)
            shutil.copyfileobj(src, disk)
    except OSError as exc:
        raise _io_error("failed to write boot image", exc) from exc

    pad_to_nearest_block_size(output)


def pad_to_nearest_block_size(output_bin_path: str | os.PathLike) -> None:
    """Extend a file with zero bytes to a multiple of the 512-byte block size."""
    path = Path(output_bin_path)
    try:
        handle = path.open("r+b")
    except OSError as exc:
        raise _io_error("failed to open boot image", exc) from exc
    with handle:
        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError as exc:
            raise _io_error("failed to get size of boot image", exc) from exc
        padding = -size % BLOCK_SIZE
        try:
            handle.truncate(size + padding)
        except OSError as exc:
            raise _io_error("failed to pad boot image to a multiple of the block size", exc) from exc
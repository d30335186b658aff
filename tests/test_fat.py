import os
from pathlib import Path

import pytest

from bootdisk.fat import (
    DEFAULT_LABEL,
    KERNEL_FILE_NAME,
    add_files_to_image,
    create_fat_filesystem,
    volume_label,
)
from bootdisk.fatvol import FatError, FatVolume, format_volume
from bootdisk.sources import DataSource, FileSource

MB = 1024 * 1024


def test_default_label_without_kernel():
    assert volume_label({"ramdisk": DataSource(b"x")}) == b"MY_RUST_OS!"


def test_kernel_from_memory_uses_default_label():
    assert volume_label({KERNEL_FILE_NAME: DataSource(b"elf")}) == DEFAULT_LABEL


def test_label_from_kernel_file_stem():
    label = volume_label({KERNEL_FILE_NAME: FileSource(Path("build/mykernel.elf"))})
    assert len(label) == 11
    assert label.rstrip(b"\0") == b"mykernel"


def test_long_stem_is_truncated():
    label = volume_label({KERNEL_FILE_NAME: FileSource(Path("averyverylongkernelname.bin"))})
    assert label == b"averyverylongkernelname"[:11]


def test_create_round_trip(tmp_path):
    kernel = tmp_path / "kernel.bin"
    kernel_data = bytes(range(256)) * 40
    kernel.write_bytes(kernel_data)
    files = {
        KERNEL_FILE_NAME: FileSource(kernel),
        "efi/boot/bootx64.efi": DataSource(b"loader bytes"),
        "boot.json": DataSource(b"{}"),
    }
    out = tmp_path / "boot.fat"
    create_fat_filesystem(files, out)
    with FatVolume.open(out) as volume:
        assert volume.read_file(KERNEL_FILE_NAME) == kernel_data
        assert volume.read_file("efi/boot/bootx64.efi") == b"loader bytes"
        assert volume.read_file("boot.json") == b"{}"
        assert volume.list_dir("efi/boot") == ["bootx64.efi"]
    raw = out.read_bytes()
    assert raw[43:54] == volume_label(files)


def test_image_size_is_rounded_to_megabytes(tmp_path):
    data = b"\xab" * 300_000
    out = tmp_path / "boot.fat"
    create_fat_filesystem({"payload": DataSource(data)}, out)
    size = os.path.getsize(out)
    assert size % MB == 0
    assert size >= len(data) + MB


def test_missing_source_file_raises(tmp_path):
    files = {KERNEL_FILE_NAME: FileSource(tmp_path / "missing")}
    with pytest.raises(FatError):
        create_fat_filesystem(files, tmp_path / "boot.fat")


def test_add_files_creates_nested_directories(tmp_path):
    image = tmp_path / "vol.img"
    with image.open("wb") as fh:
        fh.truncate(2 * MB)
    format_volume(image, "TEST")
    with FatVolume.open(image) as volume:
        add_files_to_image(
            volume,
            {"a/b/c.txt": DataSource(b"nested"), "a/top.txt": DataSource(b"top")},
        )
    with FatVolume.open(image) as volume:
        assert volume.read_file("a/b/c.txt") == b"nested"
        assert volume.read_file("a/top.txt") == b"top"
        assert sorted(volume.list_dir("a")) == ["b", "top.txt"]
"""GUID partition table disks holding a single EFI system partition."""

from __future__ import annotations

import os
import shutil
import struct
import uuid
import zlib
from dataclasses import dataclass
from pathlib import Path

SECTOR = 512
EFI_SYSTEM_PARTITION = uuid.UUID("C12A7328-F81F-11D2-BA4B-00A0C93EC93B")
_HEADER_ROOM = 1024 * 64
_ENTRY_COUNT = 128
_ENTRY_SIZE = 128
_ENTRY_SECTORS = _ENTRY_COUNT * _ENTRY_SIZE // SECTOR
_SIGNATURE = b"EFI PART"
_REVISION = 0x0001_0000
_HEADER = struct.Struct("<8sIIIIQQQQ16sQIII")
_ENTRY = struct.Struct("<16s16sQQQ72s")
_MBR_ENTRY = struct.Struct("<B3sB3sII")


@dataclass(frozen=True)
class GptPartition:
    """A partition entry read from a GPT disk."""

    name: str
    type_guid: uuid.UUID
    unique_guid: uuid.UUID
    first_lba: int
    last_lba: int
    attributes: int = 0

    @property
    def start_offset(self) -> int:
        return self.first_lba * SECTOR

    @property
    def size_bytes(self) -> int:
        return (self.last_lba - self.first_lba + 1) * SECTOR


def _protective_mbr(size_in_lba: int) -> bytes:
    sector = bytearray(SECTOR)
    sector[446:462] = _MBR_ENTRY.pack(0x00, b"\x00\x02\x00", 0xEE, b"\xff\xff\xff", 1, size_in_lba)
    sector[510:512] = b"\x55\xaa"
    return bytes(sector)


def _header(my_lba: int, alternate_lba: int, first_usable: int, last_usable: int,
            disk_guid: uuid.UUID, entries_lba: int, entries_crc: int) -> bytes:
    fields = [_SIGNATURE, _REVISION, _HEADER.size, 0, 0, my_lba, alternate_lba, first_usable,
              last_usable, disk_guid.bytes_le, entries_lba, _ENTRY_COUNT, _ENTRY_SIZE, entries_crc]
    crc = zlib.crc32(_HEADER.pack(*fields))
    fields[3] = crc
    return _HEADER.pack(*fields).ljust(SECTOR, b"\0")


def create_gpt_disk(fat_image: str | os.PathLike, out_gpt_path: str | os.PathLike) -> None:
    """Write a GPT disk whose only partition is an EFI system partition holding ``fat_image``."""
    fat_path = Path(fat_image)
    with Path(out_gpt_path).open("w+b") as disk:
        partition_size = fat_path.stat().st_size
        disk_size = partition_size + _HEADER_ROOM
        disk.truncate(disk_size)

        total_sectors = disk_size // SECTOR
        disk.seek(0)
        disk.write(_protective_mbr(min(total_sectors - 1, 0xFFFF_FFFF)))

        last_lba = total_sectors - 1
        first_usable = 2 + _ENTRY_SECTORS
        last_usable = last_lba - _ENTRY_SECTORS - 1
        sectors = -(-partition_size // SECTOR)
        if sectors == 0:
            raise ValueError("FAT image is empty")
        first = first_usable
        last = first + sectors - 1
        if last > last_usable:
            raise ValueError("not enough space on disk for the boot partition")

        name = "boot".encode("utf-16-le").ljust(72, b"\0")
        entry = _ENTRY.pack(EFI_SYSTEM_PARTITION.bytes_le, uuid.uuid4().bytes_le, first, last, 0, name)
        entries = entry.ljust(_ENTRY_COUNT * _ENTRY_SIZE, b"\0")
        entries_crc = zlib.crc32(entries)
        disk_guid = uuid.uuid4()

        backup_entries_lba = last_lba - _ENTRY_SECTORS
        disk.seek(SECTOR)
        disk.write(_header(1, last_lba, first_usable, last_usable, disk_guid, 2, entries_crc))
        disk.write(entries)
        disk.seek(backup_entries_lba * SECTOR)
        disk.write(entries)
        disk.write(_header(last_lba, 1, first_usable, last_usable, disk_guid,
                           backup_entries_lba, entries_crc))

        disk.seek(first * SECTOR)
        with fat_path.open("rb") as src:
            shutil.copyfileobj(src, disk)


def read_gpt_partitions(path: str | os.PathLike) -> list[GptPartition]:
    """Read the used partitions from the primary GPT of a disk image."""
    with Path(path).open("rb") as disk:
        disk.seek(SECTOR)
        raw = disk.read(_HEADER.size)
        if len(raw) < _HEADER.size:
            raise ValueError("disk too small for a GPT header")
        fields = list(_HEADER.unpack(raw))
        if fields[0] != _SIGNATURE:
            raise ValueError("GPT header signature missing")
        stored_crc = fields[3]
        fields[3] = 0
        if zlib.crc32(_HEADER.pack(*fields)) != stored_crc:
            raise ValueError("GPT header checksum mismatch")
        entries_lba, count, size, entries_crc = fields[10:14]
        if size < _ENTRY.size:
            raise ValueError("unsupported GPT partition entry size")
        disk.seek(entries_lba * SECTOR)
        entries = disk.read(count * size)
    if len(entries) != count * size or zlib.crc32(entries) != entries_crc:
        raise ValueError("GPT partition array checksum mismatch")

    partitions = []
    for offset in range(0, count * size, size):
        type_raw, unique_raw, first, last, attributes, name_raw = _ENTRY.unpack_from(entries, offset)
        if type_raw == bytes(16):
            continue
        name = name_raw.decode("utf-16-le", "replace").split("\x00", 1)[0]
        partitions.append(GptPartition(name, uuid.UUID(bytes_le=type_raw),
                                       uuid.UUID(bytes_le=unique_raw), first, last, attributes))
    return partitions
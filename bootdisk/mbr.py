"""Master boot record disks for BIOS booting."""

from __future__ import annotations

import os
import shutil
import struct
from dataclasses import dataclass, field
from pathlib import Path

SECTOR_SIZE = 512
BOOT_ACTIVE = 0x80
BOOT_INACTIVE = 0x00
SECOND_STAGE_PARTITION_TYPE = 0x20
FAT32_LBA_PARTITION_TYPE = 0x0C
_U32_MAX = 0xFFFF_FFFF
_ENTRY = struct.Struct("<B3sB3sII")
_SIGNATURE = b"\x55\xaa"


class MbrError(Exception):
    """Reading or building a master boot record failed."""


@dataclass
class PartitionEntry:
    """One of the four primary partition entries of an MBR."""

    boot: int = BOOT_INACTIVE
    first_chs: bytes = bytes(3)
    sys: int = 0
    last_chs: bytes = bytes(3)
    starting_lba: int = 0
    sectors: int = 0

    def is_unused(self) -> bool:
        return self.sys == 0

    def to_bytes(self) -> bytes:
        try:
            return _ENTRY.pack(self.boot, bytes(self.first_chs), self.sys, bytes(self.last_chs),
                               self.starting_lba, self.sectors)
        except struct.error as exc:
            raise MbrError(f"invalid partition entry: {exc}") from exc

    @classmethod
    def from_bytes(cls, data: bytes) -> "PartitionEntry":
        if len(data) != _ENTRY.size:
            raise MbrError("partition entry must be 16 bytes")
        return cls(*_ENTRY.unpack(data))


def _empty_partitions() -> list[PartitionEntry]:
    return [PartitionEntry() for _ in range(4)]


@dataclass
class MasterBootRecord:
    """The first sector of a disk: boot code, disk signature and partition table."""

    bootstrap_code: bytes = bytes(440)
    disk_signature: bytes = bytes(4)
    copy_protected: bytes = bytes(2)
    partitions: list[PartitionEntry] = field(default_factory=_empty_partitions)

    @classmethod
    def from_bytes(cls, data: bytes) -> "MasterBootRecord":
        data = bytes(data)
        if len(data) < SECTOR_SIZE:
            raise MbrError("MBR must be at least 512 bytes")
        if data[510:512] != _SIGNATURE:
            raise MbrError("invalid MBR boot signature")
        partitions = [PartitionEntry.from_bytes(data[off:off + _ENTRY.size])
                      for off in range(446, 510, _ENTRY.size)]
        return cls(data[:440], data[440:444], data[444:446], partitions)

    def to_bytes(self) -> bytes:
        if (len(self.bootstrap_code), len(self.disk_signature), len(self.copy_protected)) != (440, 4, 2):
            raise MbrError("invalid MBR field sizes")
        if len(self.partitions) != 4:
            raise MbrError("an MBR holds exactly four partition entries")
        return (bytes(self.bootstrap_code) + bytes(self.disk_signature) + bytes(self.copy_protected)
                + b"".join(entry.to_bytes() for entry in self.partitions) + _SIGNATURE)


def _sectors_for(size: int, what: str) -> int:
    if size == 0:
        raise MbrError(f"{what} is empty")
    sectors = (size - 1) // SECTOR_SIZE + 1
    if sectors > _U32_MAX:
        raise MbrError(f"size of {what} is larger than u32::MAX")
    return sectors


def create_mbr_disk(bootsector_binary: bytes, second_stage_binary: bytes,
                    boot_partition_path: str | os.PathLike, out_mbr_path: str | os.PathLike) -> None:
    """Write a BIOS disk: boot sector, second stage, then the FAT boot partition."""
    try:
        mbr = MasterBootRecord.from_bytes(bootsector_binary)
    except MbrError as exc:
        raise MbrError(f"failed to read MBR: {exc}") from exc
    for number, entry in enumerate(mbr.partitions, start=1):
        if not entry.is_unused():
            raise MbrError(f"partition {number} should be unused")

    second_stage = bytes(second_stage_binary)
    second_stage_start = 1
    second_stage_sectors = _sectors_for(len(second_stage), "second stage")
    mbr.partitions[0] = PartitionEntry(BOOT_ACTIVE, bytes(3), SECOND_STAGE_PARTITION_TYPE, bytes(3),
                                       second_stage_start, second_stage_sectors)

    boot_path = Path(boot_partition_path)
    boot_start = second_stage_start + second_stage_sectors
    boot_size = boot_path.stat().st_size
    mbr.partitions[1] = PartitionEntry(BOOT_ACTIVE, bytes(3), FAT32_LBA_PARTITION_TYPE, bytes(3),
                                       boot_start, _sectors_for(boot_size, "FAT partition"))

    with boot_path.open("rb") as boot_partition, Path(out_mbr_path).open("w+b") as disk:
        disk.write(mbr.to_bytes())
        disk.write(second_stage)
        disk.seek(boot_start * SECTOR_SIZE)
        shutil.copyfileobj(boot_partition, disk)
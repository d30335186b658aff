import pytest

from bootdisk.mbr import (
    BOOT_ACTIVE,
    MasterBootRecord,
    MbrError,
    PartitionEntry,
    create_mbr_disk,
)


def _boot_sector():
    sector = bytearray(512)
    sector[:4] = b"\xfa\x31\xc0\x8e"
    sector[510:512] = b"\x55\xaa"
    return bytes(sector)


def test_partition_entry_round_trip():
    entry = PartitionEntry(BOOT_ACTIVE, bytes(3), 0x0C, bytes(3), 7, 4096)
    raw = entry.to_bytes()
    assert len(raw) == 16
    assert PartitionEntry.from_bytes(raw) == entry


def test_partition_entry_unused():
    assert PartitionEntry().is_unused()
    assert not PartitionEntry(sys=0x20).is_unused()


def test_mbr_round_trip():
    mbr = MasterBootRecord.from_bytes(_boot_sector())
    assert mbr.to_bytes() == _boot_sector()
    assert all(entry.is_unused() for entry in mbr.partitions)


def test_bad_signature_rejected():
    with pytest.raises(MbrError):
        MasterBootRecord.from_bytes(bytes(512))


def test_short_data_rejected():
    with pytest.raises(MbrError):
        MasterBootRecord.from_bytes(b"\x55\xaa")


def test_create_mbr_disk_layout(tmp_path):
    second_stage = bytes(i % 200 for i in range(1000))
    fat = tmp_path / "fat.img"
    fat_data = b"\x5a" * 2048
    fat.write_bytes(fat_data)
    out = tmp_path / "disk.img"
    create_mbr_disk(_boot_sector(), second_stage, fat, out)

    raw = out.read_bytes()
    assert raw[:440] == _boot_sector()[:440]
    mbr = MasterBootRecord.from_bytes(raw)
    stage, boot = mbr.partitions[0], mbr.partitions[1]
    assert (stage.boot, stage.sys, stage.starting_lba) == (0x80, 0x20, 1)
    assert stage.sectors * 512 >= len(second_stage)
    assert (boot.boot, boot.sys) == (0x80, 0x0C)
    assert boot.starting_lba == 1 + stage.sectors
    assert boot.sectors * 512 >= len(fat_data)
    assert raw[512:512 + len(second_stage)] == second_stage
    start = boot.starting_lba * 512
    assert raw[start:start + len(fat_data)] == fat_data


def test_used_partition_in_boot_sector_rejected(tmp_path):
    sector = bytearray(_boot_sector())
    sector[446 + 4] = 0x0C
    fat = tmp_path / "fat.img"
    fat.write_bytes(b"\0" * 512)
    with pytest.raises(MbrError):
        create_mbr_disk(bytes(sector), b"stage", fat, tmp_path / "disk.img")


def test_empty_second_stage_rejected(tmp_path):
    fat = tmp_path / "fat.img"
    fat.write_bytes(b"\0" * 512)
    with pytest.raises(MbrError):
        create_mbr_disk(_boot_sector(), b"", fat, tmp_path / "disk.img")
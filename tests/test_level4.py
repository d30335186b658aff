import random

import pytest

from bootdisk.elf_layout import ProgramHeader, SegmentType, VirtualAddressOffset
from bootdisk.level4 import LEVEL_4_SIZE, UsedLevel4Entries, p4_index


def test_fresh_table_is_free():
    entries = UsedLevel4Entries()
    assert not any(entries.is_used(i) for i in range(512))


def test_first_free_entry_without_rng():
    entries = UsedLevel4Entries()
    entries.mark_p4_index_as_used(0)
    index = entries.get_free_entries(1)
    assert index == 1
    assert entries.is_used(index)


def test_contiguous_window_skips_used_entry():
    entries = UsedLevel4Entries()
    entries.mark_p4_index_as_used(1)
    index = entries.get_free_entries(2)
    assert index == 2
    assert entries.is_used(2) and entries.is_used(3)
    assert not entries.is_used(0)


def test_mark_range_covers_touched_entries():
    entries = UsedLevel4Entries()
    entries.mark_range_as_used(0, 2 * LEVEL_4_SIZE)
    assert entries.is_used(p4_index(0))
    assert entries.is_used(p4_index(LEVEL_4_SIZE))
    assert not entries.is_used(p4_index(2 * LEVEL_4_SIZE))


def test_invalid_requests():
    entries = UsedLevel4Entries()
    with pytest.raises(ValueError):
        entries.get_free_entries(0)
    with pytest.raises(RuntimeError):
        entries.get_free_entries(513)
    with pytest.raises(ValueError):
        entries.get_free_address(4096, 3)


def test_non_canonical_address_rejected():
    with pytest.raises(ValueError):
        p4_index(1 << 47)
    with pytest.raises(ValueError):
        UsedLevel4Entries().mark_range_as_used(1 << 47, 4096)


def test_free_address_is_entry_aligned_and_reserved():
    entries = UsedLevel4Entries()
    address = entries.get_free_address(4096, 4096)
    assert address % LEVEL_4_SIZE == 0
    assert entries.is_used(p4_index(address))


def test_upper_half_address_is_sign_extended():
    entries = UsedLevel4Entries()
    for index in range(256):
        entries.mark_p4_index_as_used(index)
    address = entries.get_free_address(4096, 4096)
    assert address == 0xFFFF_8000_0000_0000
    assert p4_index(address) == 256


def test_random_placement_stays_inside_reserved_entries():
    entries = UsedLevel4Entries(random.Random(7))
    size = LEVEL_4_SIZE + 12345
    alignment = 0x20_0000
    for _ in range(5):
        address = entries.get_free_address(size, alignment)
        assert address % alignment == 0
        assert entries.is_used(p4_index(address))
        assert entries.is_used(p4_index(address + size - 1))


def test_random_entries_are_free_before_and_used_after():
    entries = UsedLevel4Entries(random.Random(3))
    before = [entries.is_used(i) for i in range(512)]
    index = entries.get_free_entries(4)
    assert not any(before[index:index + 4])
    assert all(entries.is_used(i) for i in range(index, index + 4))


def test_dynamic_range_start_blocks_lower_entries():
    entries = UsedLevel4Entries()
    start = 5 * LEVEL_4_SIZE
    entries.mark_dynamic_range(start, None)
    assert all(entries.is_used(i) for i in range(p4_index(start)))
    assert not entries.is_used(p4_index(start))


def test_dynamic_range_end_blocks_upper_entries():
    entries = UsedLevel4Entries()
    end = 10 * LEVEL_4_SIZE - 1
    entries.mark_dynamic_range(None, end)
    assert not entries.is_used(p4_index(end))
    assert all(entries.is_used(i) for i in range(p4_index(end) + 1, 512))


def test_mark_segments_skips_empty_segments():
    entries = UsedLevel4Entries()
    offset = VirtualAddressOffset(3 * LEVEL_4_SIZE)
    segments = [
        ProgramHeader(SegmentType.LOAD, 0x1000, 0x2000),
        ProgramHeader(SegmentType.LOAD, LEVEL_4_SIZE, 0),
    ]
    entries.mark_segments(segments, offset)
    assert entries.is_used(p4_index(offset + 0x1000))
    assert not entries.is_used(p4_index(offset + LEVEL_4_SIZE))
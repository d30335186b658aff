import pytest

from bootdisk.elf_layout import (
    ElfLayoutError,
    ProgramHeader,
    SegmentType,
    VirtualAddressOffset,
    calc_elf_memory_requirements,
    check_is_in_load,
)

HEADERS = [
    ProgramHeader(SegmentType.LOAD, 0x1000, 0x2000, align=0x1000),
    ProgramHeader(SegmentType.LOAD, 0x4000, 0x500, align=0x200000),
    ProgramHeader(SegmentType.TLS, 0x9000_0000, 0x100, align=0x400000),
]


def test_requirements_ignore_non_load():
    req = calc_elf_memory_requirements(HEADERS)
    assert req.min_addr == 0x1000
    assert req.size == 0x4000 + 0x500 - 0x1000
    assert req.align == 0x200000


def test_requirements_empty():
    req = calc_elf_memory_requirements([])
    assert (req.size, req.align, req.min_addr) == (0, 1, 0)


def test_offset_add():
    assert VirtualAddressOffset.zero() + 0x1234 == 0x1234
    assert VirtualAddressOffset(-0x1000) + 0x3000 == 0x2000


def test_offset_underflow():
    with pytest.raises(ElfLayoutError):
        VirtualAddressOffset(-0x2000) + 0x1000


def test_check_in_load():
    check_is_in_load(HEADERS, 0x1000)
    assert calc_elf_memory_requirements(HEADERS[:1]).min_addr == 0x1000
    with pytest.raises(ElfLayoutError):
        check_is_in_load(HEADERS, 0x3000)
    with pytest.raises(ElfLayoutError):
        check_is_in_load(HEADERS, 0x9000_0000)
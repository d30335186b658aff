"""Tracks which level 4 page table entries of the kernel address space are in use."""

from __future__ import annotations

import random
from typing import Iterable

from .elf_layout import ProgramHeader, VirtualAddressOffset

ENTRY_COUNT = 512
PAGE_SIZE = 4096
LEVEL_4_SIZE = 4096 * 512 * 512 * 512
_U64_MAX = 2**64 - 1
_LAST_LOWER_PAGE = 0x0000_7FFF_FFFF_F000
_FIRST_UPPER_PAGE = 0xFFFF_8000_0000_0000
_LAST_PAGE = 0xFFFF_FFFF_FFFF_F000


def _check_virt(address: int) -> int:
    if not 0 <= address <= _U64_MAX or (address >> 47) not in (0, 0x1FFFF):
        raise ValueError(f"virtual address {address:#x} is not canonical")
    return address


def p4_index(address: int) -> int:
    """Level 4 page table index of a canonical virtual address."""
    return (_check_virt(address) >> 39) & 0x1FF


def _p4_base(index: int) -> int:
    address = index << 39
    if address & (1 << 47):
        address |= 0xFFFF << 48
    return address


def _page(address: int) -> int:
    return _check_virt(address) & ~(PAGE_SIZE - 1)


def _previous_page(page: int) -> int | None:
    if page == 0:
        return None
    return _LAST_LOWER_PAGE if page == _FIRST_UPPER_PAGE else page - PAGE_SIZE


def _next_page(page: int) -> int | None:
    if page == _LAST_PAGE:
        return None
    return _FIRST_UPPER_PAGE if page == _LAST_LOWER_PAGE else page + PAGE_SIZE


class UsedLevel4Entries:
    """Used/free state of the 512 level 4 entries, with optional randomised placement."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._used = [False] * ENTRY_COUNT
        self._rng = rng

    def is_used(self, index: int) -> bool:
        return self._used[index]

    def mark_p4_index_as_used(self, index: int) -> None:
        if not 0 <= index < ENTRY_COUNT:
            raise ValueError(f"level 4 index {index} out of range")
        self._used[index] = True

    def mark_range_as_used(self, address: int, size: int) -> None:
        """Mark every entry touched by ``[address, address + size)`` as used."""
        start = _check_virt(address)
        end_inclusive = _check_virt(_check_virt(start + size) - 1)
        for index in range(p4_index(start), p4_index(end_inclusive) + 1):
            self.mark_p4_index_as_used(index)

    def mark_segments(self, segments: Iterable[ProgramHeader],
                      virtual_address_offset: VirtualAddressOffset) -> None:
        """Mark the virtual address ranges of all non-empty segments as used."""
        for segment in segments:
            if segment.mem_size > 0:
                self.mark_range_as_used(virtual_address_offset + segment.virtual_addr, segment.mem_size)

    def mark_dynamic_range(self, start: int | None = None, end: int | None = None) -> None:
        """Mark every entry before ``start`` and after ``end`` as unusable."""
        if start is not None:
            before = _previous_page(_page(start))
            if before is not None:
                for index in range(p4_index(before) + 1):
                    self.mark_p4_index_as_used(index)
        if end is not None:
            after = _next_page(_page(end))
            if after is not None:
                for index in range(p4_index(after), ENTRY_COUNT):
                    self.mark_p4_index_as_used(index)

    def get_free_entries(self, num: int) -> int:
        """Reserve ``num`` contiguous free entries and return the first index."""
        if num <= 0:
            raise ValueError("at least one level 4 entry must be requested")
        candidates = [
            index for index in range(ENTRY_COUNT - num + 1)
            if not any(self._used[index:index + num])
        ]
        if not candidates:
            raise RuntimeError(f"no usable level 4 entries found ({num} entries requested)")
        index = self._rng.choice(candidates) if self._rng is not None else candidates[0]
        self._used[index:index + num] = [True] * num
        return index

    def get_free_address(self, size: int, alignment: int) -> int:
        """Reserve entries for ``size`` bytes and return an aligned address inside them."""
        if alignment <= 0 or alignment & (alignment - 1):
            raise ValueError("alignment must be a power of two")
        entries = (size + LEVEL_4_SIZE - 1) // LEVEL_4_SIZE
        base = _p4_base(self.get_free_entries(entries))
        offset = 0
        if self._rng is not None:
            max_offset = LEVEL_4_SIZE - (size % LEVEL_4_SIZE)
            offset = self._rng.randrange(max_offset // alignment) * alignment
        return base + offset
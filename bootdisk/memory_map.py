"""Physical frame allocation and boot memory map construction from firmware regions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Iterable, Iterator

PAGE_SIZE = 0x1000
LOWER_MEMORY_END_PAGE = 0x10_0000
_MIN_MAX_PHYS_ADDR = 0x1_0000_0000


def align_down(value: int, align: int) -> int:
    """Round ``value`` down to a multiple of the power-of-two ``align``."""
    if align <= 0 or align & (align - 1):
        raise ValueError("alignment must be a power of two")
    return value & ~(align - 1)


def align_up(value: int, align: int) -> int:
    """Round ``value`` up to a multiple of the power-of-two ``align``."""
    if align <= 0 or align & (align - 1):
        raise ValueError("alignment must be a power of two")
    return (value + align - 1) & ~(align - 1)


@dataclass(frozen=True)
class MemoryRegionKind:
    """The type of a memory region: usable, bootloader, or an unknown firmware type."""

    tag: str
    code: int = 0

    USABLE: ClassVar["MemoryRegionKind"]
    BOOTLOADER: ClassVar["MemoryRegionKind"]

    @classmethod
    def unknown_bios(cls, code: int) -> "MemoryRegionKind":
        return cls("unknown_bios", code)

    @classmethod
    def unknown_uefi(cls, code: int) -> "MemoryRegionKind":
        return cls("unknown_uefi", code)

    def __repr__(self) -> str:
        if self.tag in ("usable", "bootloader"):
            return f"MemoryRegionKind.{self.tag.upper()}"
        return f"MemoryRegionKind.{self.tag}({self.code})"


MemoryRegionKind.USABLE = MemoryRegionKind("usable")
MemoryRegionKind.BOOTLOADER = MemoryRegionKind("bootloader")


@dataclass(frozen=True)
class MemoryRegion:
    """A physical memory region in the memory map handed to the kernel."""

    start: int
    end: int
    kind: MemoryRegionKind


@dataclass(frozen=True)
class UsedMemorySlice:
    """Memory used by the bootloader that the kernel must treat as reserved."""

    start: int
    end: int

    @classmethod
    def new_from_len(cls, start: int, length: int) -> "UsedMemorySlice":
        return cls(start, start + length)


@dataclass(frozen=True)
class LegacyMemoryRegion:
    """A memory region as reported by the BIOS or UEFI firmware."""

    start: int
    length: int
    kind: MemoryRegionKind
    usable_after_bootloader_exit: bool = False

    @property
    def end(self) -> int:
        return self.start + self.length

    @property
    def is_empty(self) -> bool:
        return self.length == 0


class LegacyFrameAllocator:
    """Allocates 4 KiB physical frames from the usable regions of a firmware memory map.

    Frames below 1 MiB (and below ``start_frame``, if higher) are never handed out.
    """

    def __init__(self, memory_map: Iterable[LegacyMemoryRegion], start_frame: int | None = None) -> None:
        lower = align_down(LOWER_MEMORY_END_PAGE, PAGE_SIZE)
        frame = lower if start_frame is None else max(align_down(start_frame, PAGE_SIZE), lower)
        self._original: list[LegacyMemoryRegion] = list(memory_map)
        self._remaining: Iterator[LegacyMemoryRegion] = iter(self._original)
        self._current: LegacyMemoryRegion | None = None
        self._next_frame = frame
        self._min_frame = frame

    def __len__(self) -> int:
        return len(self._original)

    def _allocate_from(self, descriptor: LegacyMemoryRegion) -> int | None:
        if descriptor.is_empty:
            return None
        start_frame = align_down(descriptor.start, PAGE_SIZE)
        end_frame = align_down(descriptor.end - 1, PAGE_SIZE)
        if self._next_frame < start_frame:
            self._next_frame = start_frame
        if self._next_frame <= end_frame:
            frame = self._next_frame
            self._next_frame += PAGE_SIZE
            return frame
        return None

    def allocate_frame(self) -> int | None:
        """Return the start address of a free frame, or ``None`` when memory is exhausted."""
        if self._current is not None:
            frame = self._allocate_from(self._current)
            if frame is not None:
                return frame
            self._current = None
        for descriptor in self._remaining:
            if descriptor.kind != MemoryRegionKind.USABLE:
                continue
            frame = self._allocate_from(descriptor)
            if frame is not None:
                self._current = descriptor
                return frame
        return None

    def max_phys_addr(self) -> int:
        """Highest physical address in the map, but at least 4 GiB."""
        if not self._original:
            raise ValueError("memory map is empty")
        highest = max(region.end for region in self._original)
        return max(highest, _MIN_MAX_PHYS_ADDR)

    def memory_map_max_region_count(self) -> int:
        """Upper bound on the number of regions produced by :meth:`construct_memory_map`."""
        return len(self) + 6

    def construct_memory_map(
        self,
        kernel_slice_start: int,
        kernel_slice_len: int,
        ramdisk_slice_start: int | None,
        ramdisk_slice_len: int,
        capacity: int | None = None,
    ) -> list[MemoryRegion]:
        """Build the kernel's memory map, marking bootloader-used memory as reserved."""
        if capacity is None:
            capacity = self.memory_map_max_region_count()
        slices = [
            UsedMemorySlice(self._min_frame, self._next_frame),
            UsedMemorySlice.new_from_len(kernel_slice_start, kernel_slice_len),
        ]
        if ramdisk_slice_start is not None:
            slices.append(UsedMemorySlice.new_from_len(ramdisk_slice_start, ramdisk_slice_len))
        used = [UsedMemorySlice(align_down(s.start, PAGE_SIZE), align_up(s.end, PAGE_SIZE)) for s in slices]

        regions: list[MemoryRegion] = []

        def add(region: MemoryRegion) -> None:
            if region.start == region.end:
                return
            if len(regions) >= capacity:
                raise ValueError("cannot add region: no more free entries in memory map")
            regions.append(region)

        for descriptor in self._original:
            kind = MemoryRegionKind.USABLE if descriptor.usable_after_bootloader_exit else descriptor.kind
            region = MemoryRegion(descriptor.start, descriptor.end, kind)
            if kind == MemoryRegionKind.USABLE:
                for part in _split_usable(region, used):
                    add(part)
            else:
                add(region)
        return regions


def _split_usable(region: MemoryRegion, used: list[UsedMemorySlice]) -> Iterator[MemoryRegion]:
    start, end = region.start, region.end
    while start != end:
        overlaps = [
            (max(start, s.start), min(end, s.end))
            for s in used
            if max(start, s.start) < min(end, s.end)
        ]
        if not overlaps:
            yield MemoryRegion(start, end, MemoryRegionKind.USABLE)
            return
        overlap_start, overlap_end = min(overlaps, key=lambda pair: pair[0])
        yield MemoryRegion(start, overlap_start, MemoryRegionKind.USABLE)
        yield MemoryRegion(overlap_start, overlap_end, MemoryRegionKind.BOOTLOADER)
        start = overlap_end
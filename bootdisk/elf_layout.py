"""Memory layout of ELF program headers and virtual address offsets."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable

_U64_MAX = 2**64 - 1


class ElfLayoutError(Exception):
    """An ELF layout calculation failed."""


class SegmentType(IntEnum):
    NULL = 0
    LOAD = 1
    DYNAMIC = 2
    INTERP = 3
    NOTE = 4
    SHLIB = 5
    PHDR = 6
    TLS = 7
    GNU_RELRO = 0x6474E552


@dataclass(frozen=True)
class ProgramHeader:
    """The fields of an ELF program header used for loading."""

    type: int
    virtual_addr: int
    mem_size: int
    file_size: int = 0
    offset: int = 0
    align: int = 1
    flags: int = 0


@dataclass(frozen=True)
class ElfMemoryRequirements:
    size: int
    align: int
    min_addr: int


@dataclass(frozen=True)
class VirtualAddressOffset:
    """Signed offset applied to the addresses of a position-independent executable."""

    virtual_address_offset: int

    @classmethod
    def zero(cls) -> "VirtualAddressOffset":
        return cls(0)

    def __add__(self, offset: int) -> int:
        if not 0 <= offset <= _U64_MAX:
            raise ElfLayoutError("offset is not an unsigned 64-bit value")
        result = self.virtual_address_offset + offset
        if not 0 <= result <= _U64_MAX:
            raise ElfLayoutError("offset address does not fit in 64 bits")
        return result


def _loads(program_headers: Iterable[ProgramHeader]) -> list[ProgramHeader]:
    return [h for h in program_headers if h.type == SegmentType.LOAD]


def calc_elf_memory_requirements(program_headers: Iterable[ProgramHeader]) -> ElfMemoryRequirements:
    """Total size, largest alignment and lowest address of the loadable segments."""
    loads = _loads(program_headers)
    max_addr = max((h.virtual_addr + h.mem_size for h in loads), default=0)
    min_addr = min((h.virtual_addr for h in loads), default=0)
    align = max((h.align for h in loads), default=1)
    return ElfMemoryRequirements(size=max_addr - min_addr, align=align, min_addr=min_addr)


def check_is_in_load(program_headers: Iterable[ProgramHeader], virt_offset: int) -> None:
    """Raise unless the offset lies within a loadable segment."""
    for h in _loads(program_headers):
        if h.virtual_addr <= virt_offset and virt_offset - h.virtual_addr < h.mem_size:
            return
    raise ElfLayoutError("offset is not in load segment")
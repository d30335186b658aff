"""A small FAT12/FAT16 volume writer and reader with long file name support."""

from __future__ import annotations

import os
import struct
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator

SECTOR = 512
ROOT_ENTRIES = 512
RESERVED = 1
NUM_FATS = 2
_DATE = (0 << 9) | (1 << 5) | 1
_ATTR_DIR = 0x10
_ATTR_ARCHIVE = 0x20
_ATTR_LABEL = 0x08
_ATTR_LFN = 0x0F
_ENTRY = struct.Struct("<11sBBBHHHHHHHI")
_BPB = struct.Struct("<3s8sHBHBHHBHHHII")
_ALLOWED = set("ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!#$%&'()-@^_`{}~")


class FatError(Exception):
    """An operation on a FAT volume failed."""


def _normalise_label(label: str | bytes) -> bytes:
    raw = label.encode("ascii") if isinstance(label, str) else bytes(label)
    if len(raw) > 11:
        raise FatError("volume label longer than 11 bytes")
    return raw.ljust(11, b" ")


def _layout(total: int) -> tuple[int, int, int, int]:
    root_sectors = ROOT_ENTRIES * 32 // SECTOR
    for spc in (1, 2, 4, 8, 16, 32, 64):
        fat_sectors = 1
        while True:
            data = total - RESERVED - root_sectors - NUM_FATS * fat_sectors
            clusters = data // spc
            bits = 12 if clusters < 4085 else 16
            need = -(-((clusters + 2) * bits) // (8 * SECTOR))
            if need <= fat_sectors:
                break
            fat_sectors = need
        if clusters < 1:
            raise FatError("volume too small")
        if clusters <= 65524:
            return spc, fat_sectors, clusters, bits
    raise FatError("volume too large for FAT16")


def format_volume(path: str | os.PathLike, label: str | bytes) -> None:
    """Write a fresh FAT file system over the whole of an existing file."""
    label_bytes = _normalise_label(label)
    size = os.path.getsize(path)
    total = size // SECTOR
    spc, fat_sectors, _, bits = _layout(total)
    boot = bytearray(SECTOR)
    boot[: _BPB.size] = _BPB.pack(
        b"\xeb\x3c\x90", b"MSWIN4.1", SECTOR, spc, RESERVED, NUM_FATS, ROOT_ENTRIES,
        total if total < 0x10000 else 0, 0xF8, fat_sectors, 32, 64, 0,
        total if total >= 0x10000 else 0,
    )
    fs_type = b"FAT12   " if bits == 12 else b"FAT16   "
    boot[36:62] = struct.pack("<BBBI11s8s", 0x80, 0, 0x29, int(time.time()) & 0xFFFFFFFF,
                              label_bytes, fs_type)
    boot[510:512] = b"\x55\xaa"
    fat = bytearray(fat_sectors * SECTOR)
    if bits == 12:
        fat[0:3] = b"\xf8\xff\xff"
    else:
        fat[0:4] = b"\xf8\xff\xff\xff"
    root = bytearray(ROOT_ENTRIES * 32)
    root[0:32] = _ENTRY.pack(label_bytes, _ATTR_LABEL, 0, 0, 0, 0, 0, 0, 0, _DATE, 0, 0)
    with open(path, "r+b") as fh:
        fh.write(bytes(boot))
        fh.seek(RESERVED * SECTOR)
        for _ in range(NUM_FATS):
            fh.write(bytes(fat))
        fh.write(bytes(root))


@dataclass
class _Entry:
    name: str
    short: bytes
    attr: int
    cluster: int
    size: int
    offset: int

    @property
    def is_dir(self) -> bool:
        return bool(self.attr & _ATTR_DIR)


def _split(path: str) -> list[str]:
    return [p for p in str(path).replace("\\", "/").split("/") if p]


def _checksum(short: bytes) -> int:
    s = 0
    for c in short:
        s = (((s & 1) << 7) + (s >> 1) + c) & 0xFF
    return s


def _display_short(short: bytes) -> str:
    base = short[:8].rstrip().decode("ascii", "replace")
    ext = short[8:].rstrip().decode("ascii", "replace")
    return f"{base}.{ext}" if ext else base


def _is_short(name: str) -> bool:
    if name in (".", "..") or name != name.upper() or name.count(".") > 1:
        return False
    base, _, ext = name.partition(".")
    return 1 <= len(base) <= 8 and len(ext) <= 3 and set(base + ext) <= _ALLOWED


def _clean(part: str) -> str:
    return "".join(c if c in _ALLOWED else "_" for c in part.upper() if c not in " .")


def _lfn_entries(name: str, checksum: int) -> list[bytes]:
    raw = name.encode("utf-16-le")
    units = [raw[i:i + 2] for i in range(0, len(raw), 2)]
    if len(units) > 255:
        raise FatError("file name too long")
    if len(units) % 13:
        units.append(b"\0\0")
        units.extend([b"\xff\xff"] * (-len(units) % 13))
    count = len(units) // 13
    entries = []
    for seq in range(1, count + 1):
        c = units[(seq - 1) * 13: seq * 13]
        order = seq | (0x40 if seq == count else 0)
        entries.append(bytes([order]) + b"".join(c[0:5]) + bytes([_ATTR_LFN, 0, checksum])
                       + b"".join(c[5:11]) + b"\0\0" + b"".join(c[11:13]))
    return list(reversed(entries))


def _lfn_name(parts: list[bytes]) -> str:
    raw = b"".join(p[1:11] + p[14:26] + p[28:32] for p in reversed(parts))
    name = raw.decode("utf-16-le", "replace")
    return name.split("\x00", 1)[0]


class FatVolume:
    """An open FAT12/FAT16 volume stored in a file."""

    def __init__(self, handle: BinaryIO, spc: int, fat_sectors: int, root_entries: int,
                 reserved: int, num_fats: int, clusters: int) -> None:
        self._fh = handle
        self._cluster_bytes = spc * SECTOR
        self._fat_offset = reserved * SECTOR
        self._fat_bytes = fat_sectors * SECTOR
        self._num_fats = num_fats
        self._root_offset = self._fat_offset + num_fats * self._fat_bytes
        self._root_entries = root_entries
        self._data_offset = self._root_offset + root_entries * 32
        self._clusters = clusters
        self._bits = 12 if clusters < 4085 else 16
        self._eoc = 0xFFF if self._bits == 12 else 0xFFFF
        handle.seek(self._fat_offset)
        self._fat = self._decode_fat(handle.read(self._fat_bytes))
        self._closed = False

    @classmethod
    def open(cls, path: str | os.PathLike) -> "FatVolume":
        fh = open(path, "r+b")
        try:
            boot = fh.read(SECTOR)
            if len(boot) < SECTOR or boot[510:512] != b"\x55\xaa":
                raise FatError("not a FAT volume: boot signature missing")
            (_, _, bps, spc, reserved, nfats, root_entries, total16, _, fat16, _, _, _,
             total32) = _BPB.unpack_from(boot)
            if bps != SECTOR or spc == 0 or fat16 == 0:
                raise FatError("unsupported FAT layout")
            total = total16 or total32
            data_sectors = total - reserved - nfats * fat16 - (root_entries * 32 + SECTOR - 1) // SECTOR
            clusters = data_sectors // spc
            if clusters > 65524:
                raise FatError("FAT32 volumes are not supported")
            return cls(fh, spc, fat16, root_entries, reserved, nfats, clusters)
        except BaseException:
            fh.close()
            raise

    def __enter__(self) -> "FatVolume":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        encoded = self._encode_fat()
        for n in range(self._num_fats):
            self._fh.seek(self._fat_offset + n * self._fat_bytes)
            self._fh.write(encoded)
        self._fh.flush()
        self._fh.close()
        self._closed = True

    # -- FAT table -------------------------------------------------------

    def _decode_fat(self, raw: bytes) -> list[int]:
        fat = []
        for n in range(self._clusters + 2):
            if self._bits == 12:
                off = n * 3 // 2
                v = raw[off] | (raw[off + 1] << 8)
                fat.append(v >> 4 if n & 1 else v & 0xFFF)
            else:
                fat.append(raw[2 * n] | (raw[2 * n + 1] << 8))
        return fat

    def _encode_fat(self) -> bytes:
        raw = bytearray(self._fat_bytes)
        for n, v in enumerate(self._fat):
            if self._bits == 12:
                off = n * 3 // 2
                if n & 1:
                    raw[off] = (raw[off] & 0x0F) | ((v << 4) & 0xF0)
                    raw[off + 1] = (v >> 4) & 0xFF
                else:
                    raw[off] = v & 0xFF
                    raw[off + 1] = (raw[off + 1] & 0xF0) | ((v >> 8) & 0x0F)
            else:
                raw[2 * n: 2 * n + 2] = struct.pack("<H", v)
        return bytes(raw)

    def _chain(self, cluster: int) -> Iterator[int]:
        while 2 <= cluster < (self._eoc & ~7):
            yield cluster
            cluster = self._fat[cluster]

    def _allocate(self, count: int) -> list[int]:
        free = [c for c in range(2, self._clusters + 2) if self._fat[c] == 0][:count]
        if len(free) < count:
            raise FatError("no space left on FAT volume")
        for a, b in zip(free, free[1:]):
            self._fat[a] = b
        if free:
            self._fat[free[-1]] = self._eoc
        return free

    def _free(self, cluster: int) -> None:
        for c in list(self._chain(cluster)):
            self._fat[c] = 0

    def _cluster_offset(self, cluster: int) -> int:
        return self._data_offset + (cluster - 2) * self._cluster_bytes

    def _write_clusters(self, clusters: list[int], data: bytes) -> None:
        size = self._cluster_bytes
        for idx, c in enumerate(clusters):
            self._fh.seek(self._cluster_offset(c))
            self._fh.write(data[idx * size:(idx + 1) * size].ljust(size, b"\0"))

    # -- directories -----------------------------------------------------

    def _slots(self, dir_cluster: int) -> list[int]:
        if dir_cluster == 0:
            return [self._root_offset + i * 32 for i in range(self._root_entries)]
        per = self._cluster_bytes // 32
        return [self._cluster_offset(c) + i * 32 for c in self._chain(dir_cluster) for i in range(per)]

    def _read(self, offset: int, size: int) -> bytes:
        self._fh.seek(offset)
        return self._fh.read(size)

    def _entries(self, dir_cluster: int) -> Iterator[_Entry]:
        lfn: list[bytes] = []
        for off in self._slots(dir_cluster):
            raw = self._read(off, 32)
            if raw[0] == 0:
                return
            if raw[0] == 0xE5:
                lfn = []
                continue
            attr = raw[11]
            if attr == _ATTR_LFN:
                lfn.append(raw)
                continue
            if attr & _ATTR_LABEL:
                lfn = []
                continue
            fields = _ENTRY.unpack(raw)
            short = fields[0]
            name = _lfn_name(lfn) if lfn else _display_short(short)
            lfn = []
            yield _Entry(name, short, attr, (fields[7] << 16) | fields[10], fields[11], off)

    def _find(self, dir_cluster: int, name: str) -> _Entry | None:
        wanted = name.upper()
        for e in self._entries(dir_cluster):
            if e.name.upper() == wanted or _display_short(e.short).upper() == wanted:
                return e
        return None

    def _resolve_dir(self, parts: list[str]) -> int:
        cluster = 0
        for part in parts:
            e = self._find(cluster, part)
            if e is None:
                raise FatError(f"directory `{part}` not found")
            if not e.is_dir:
                raise FatError(f"`{part}` is not a directory")
            cluster = e.cluster
        return cluster

    def _short_name(self, name: str, existing: set[bytes]) -> tuple[bytes, bool]:
        if _is_short(name):
            base, _, ext = name.partition(".")
            return (base.ljust(8) + ext.ljust(3)).encode("ascii"), False
        if "." in name[1:]:
            base, ext = name.rsplit(".", 1)
        else:
            base, ext = name, ""
        base_clean = _clean(base) or "_"
        ext_clean = _clean(ext)[:3]
        n = 1
        while True:
            tail = f"~{n}"
            cand = (base_clean[: 8 - len(tail)] + tail).ljust(8) + ext_clean.ljust(3)
            raw = cand.encode("ascii")
            if raw not in existing:
                return raw, True
            n += 1

    def _add_entry(self, dir_cluster: int, name: str, attr: int, cluster: int, size: int) -> None:
        existing = {e.short for e in self._entries(dir_cluster)}
        short, need_lfn = self._short_name(name, existing)
        records = _lfn_entries(name, _checksum(short)) if need_lfn else []
        records.append(_ENTRY.pack(short, attr, 0, 0, 0, _DATE, _DATE, cluster >> 16, 0,
                                   _DATE, cluster & 0xFFFF, size))
        while True:
            slots = self._slots(dir_cluster)
            run: list[int] = []
            ended = False
            for off in slots:
                first = 0 if ended else self._read(off, 1)[0]
                if first == 0:
                    ended = True
                if first in (0, 0xE5):
                    run.append(off)
                    if len(run) == len(records):
                        break
                else:
                    run = []
            if len(run) == len(records):
                break
            if dir_cluster == 0:
                raise FatError("root directory is full")
            (new,) = self._allocate(1)
            self._write_clusters([new], b"")
            last = list(self._chain(dir_cluster))[-1]
            self._fat[last] = new
        for off, rec in zip(run, records):
            self._fh.seek(off)
            self._fh.write(rec)

    # -- public operations ----------------------------------------------

    def create_dir(self, path: str) -> None:
        """Create a directory; its parent must exist. Existing directories are kept."""
        parts = _split(path)
        if not parts:
            return
        parent = self._resolve_dir(parts[:-1])
        found = self._find(parent, parts[-1])
        if found is not None:
            if not found.is_dir:
                raise FatError(f"`{path}` exists and is not a directory")
            return
        (cluster,) = self._allocate(1)
        dots = (_ENTRY.pack(b".          ", _ATTR_DIR, 0, 0, 0, _DATE, _DATE, cluster >> 16, 0,
                            _DATE, cluster & 0xFFFF, 0)
                + _ENTRY.pack(b"..         ", _ATTR_DIR, 0, 0, 0, _DATE, _DATE, parent >> 16, 0,
                              _DATE, parent & 0xFFFF, 0))
        self._write_clusters([cluster], dots)
        self._add_entry(parent, parts[-1], _ATTR_DIR, cluster, 0)

    def create_file(self, path: str, data: bytes) -> None:
        """Create or overwrite a file with the given contents."""
        parts = _split(path)
        if not parts:
            raise FatError("empty file path")
        parent = self._resolve_dir(parts[:-1])
        data = bytes(data)
        found = self._find(parent, parts[-1])
        if found is not None and found.is_dir:
            raise FatError(f"`{path}` is a directory")
        if found is not None:
            self._free(found.cluster)
        count = -(-len(data) // self._cluster_bytes)
        clusters = self._allocate(count)
        self._write_clusters(clusters, data)
        first = clusters[0] if clusters else 0
        if found is None:
            self._add_entry(parent, parts[-1], _ATTR_ARCHIVE, first, len(data))
        else:
            self._fh.seek(found.offset + 20)
            self._fh.write(struct.pack("<H", first >> 16))
            self._fh.seek(found.offset + 26)
            self._fh.write(struct.pack("<HI", first & 0xFFFF, len(data)))

    def read_file(self, path: str) -> bytes:
        parts = _split(path)
        if not parts:
            raise FatError("empty file path")
        e = self._find(self._resolve_dir(parts[:-1]), parts[-1])
        if e is None:
            raise FatError(f"file `{path}` not found")
        if e.is_dir:
            raise FatError(f"`{path}` is a directory")
        data = b"".join(self._read(self._cluster_offset(c), self._cluster_bytes)
                        for c in self._chain(e.cluster))
        return data[: e.size]

    def list_dir(self, path: str = "") -> list[str]:
        cluster = self._resolve_dir(_split(path))
        return [e.name for e in self._entries(cluster) if e.name not in (".", "..")]


__all__ = ["FatError", "FatVolume", "format_volume", "Path"]
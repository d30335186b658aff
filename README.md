# bootdisk

Pure-Python building blocks for bootable x86_64 disk images: FAT boot
partitions, MBR disks for BIOS machines, GPT disks for UEFI machines,
and the memory-map and page-table bookkeeping a loader does before it
jumps to a kernel. There are no runtime dependencies.

## Installation

```
pip install bootdisk
```

## A UEFI disk image

```python
from pathlib import Path

from bootdisk.fat import create_fat_filesystem
from bootdisk.gpt import create_gpt_disk, read_gpt_partitions
from bootdisk.sources import DataSource, FileSource

files = {
    "kernel-x86_64": FileSource(Path("kernel")),
    "efi/boot/bootx64.efi": FileSource(Path("bootx64.efi")),
    "notes.txt": DataSource(b"hello"),
}
create_fat_filesystem(files, "boot.fat")
create_gpt_disk("boot.fat", "uefi.img")

for partition in read_gpt_partitions("uefi.img"):
    print(partition.name, partition.start_offset, partition.size_bytes)
```

`create_fat_filesystem` sizes the image from the files it holds, creates
parent directories, and takes the volume label from the stem of the file
stored as `kernel-x86_64` when that is a `FileSource` (see
`volume_label`). `create_gpt_disk` writes a protective MBR, primary and
backup GPT headers, and one EFI system partition named `boot` holding the
FAT image.

## A BIOS disk image

```python
from bootdisk.mbr import create_mbr_disk

create_mbr_disk(boot_sector_bytes, second_stage_bytes, "boot.fat", "bios.img")
```

The boot sector must carry the `55 AA` signature and four unused
partition entries. The second stage goes in partition 1 starting at
sector 1 (type `0x20`), and the FAT image follows it in partition 2
(type `0x0C`). `MasterBootRecord` and `PartitionEntry` read and write the
record directly; failures raise `MbrError`.

## Modules

- `bootdisk.sources`: `FileSource` and `DataSource`, each with `size()`
  and `copy_to(target)`.
- `bootdisk.fatvol`: `format_volume(path, label)` and `FatVolume`
  (`open`, `create_dir`, `create_file`, `read_file`, `list_dir`, usable
  as a context manager) for FAT12/FAT16 volumes with long file names.
  FAT32 is not supported. Errors raise `FatError`.
- `bootdisk.fat`: `create_fat_filesystem`, `add_files_to_image`,
  `volume_label`.
- `bootdisk.gpt`: `create_gpt_disk`, `read_gpt_partitions`,
  `GptPartition`.
- `bootdisk.mbr`: `create_mbr_disk`, `MasterBootRecord`,
  `PartitionEntry`.
- `bootdisk.disk_image`: `create_disk_image(bootloader_elf_path,
  output_bin_path, kernel_binary)` turns a bootloader ELF into a 512-byte
  boot sector with `llvm-objcopy` (which must be on the `PATH`), appends
  the kernel, writes a FAT image holding the kernel next to the output
  with a `.fat` suffix, and pads the result with
  `pad_to_nearest_block_size`. Errors raise `DiskImageError`,
  `ObjcopyNotFoundError` or `ObjcopyFailedError`.
- `bootdisk.memory_map`: `LegacyFrameAllocator` hands out 4 KiB frames
  above 1 MiB from the usable `LegacyMemoryRegion`s of a firmware map;
  `construct_memory_map` then returns `MemoryRegion`s with the
  allocator's frames, the kernel and the ramdisk marked
  `MemoryRegionKind.BOOTLOADER`.
- `bootdisk.level4`: `UsedLevel4Entries` tracks the 512 level 4 page
  table entries and finds free ones (`get_free_entries`,
  `get_free_address`), at random when given a `random.Random`;
  `p4_index` gives the index of an address.
- `bootdisk.elf_layout`: `ProgramHeader`, `SegmentType`,
  `calc_elf_memory_requirements`, `check_is_in_load` and
  `VirtualAddressOffset`.

## What this package does not do

It has no single builder that gathers a kernel, ramdisk and bootloader
stages into a finished BIOS or UEFI image; combine `create_fat_filesystem`
with `create_mbr_disk` or `create_gpt_disk` yourself. It does not write
a `boot.json` runtime configuration, does not parse ELF files or apply
relocations, and provides no command-line tool.

## Running the tests

```
pip install "bootdisk[test]"
pytest
```
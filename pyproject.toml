[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bootdisk"
version = "0.11.10"
description = "FAT volumes, MBR and GPT disk images for booting x86_64 kernels, plus boot-time memory map and page table helpers."
requires-python = ">=3.10"
dependencies = []
keywords = ["bootloader", "disk-image", "mbr", "gpt", "fat", "uefi", "bios", "x86_64", "memory-map"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bootdisk"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

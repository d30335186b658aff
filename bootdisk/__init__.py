"""FAT, MBR and GPT disk image building and boot memory bookkeeping for x86_64 kernels."""

__version__ = "0.11.10"
"""Artifact packaging module.

This module handles:
- Serializing root filesystems into gzip-compressed newc initramfs images
- Bundling kernel image and initramfs into release archives
- Checksums and per-architecture manifests
"""

from tinylinux.packaging.cpio import INITRAMFS_NAME, CpioError, pack_initramfs
from tinylinux.packaging.manifest import (
    artifact_info,
    generate_manifest,
    write_manifest,
)
from tinylinux.packaging.release import PackagingError, pack_release

__all__ = [
    "INITRAMFS_NAME",
    "CpioError",
    "PackagingError",
    "artifact_info",
    "generate_manifest",
    "pack_initramfs",
    "pack_release",
    "write_manifest",
]

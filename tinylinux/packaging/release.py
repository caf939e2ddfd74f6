"""Release archive bundling."""

from __future__ import annotations

import gzip
import logging
import tarfile
from pathlib import Path

from tinylinux.arch import get_arch_profile
from tinylinux.packaging.cpio import INITRAMFS_NAME
from tinylinux.types import Architecture

logger = logging.getLogger(__name__)


class PackagingError(Exception):
    """Raised when release inputs are missing."""

    def __init__(self, message: str, code: str = "packaging_error") -> None:
        super().__init__(message)
        self.code = code


def release_archive_name(name: str, version: str, arch: Architecture) -> str:
    """Return '<name>_<version>_<arch>.tar.gz'."""
    return f"{name}_{version}_{arch.value}.tar.gz"


def pack_release(
    arch: Architecture | str,
    version: str,
    artifacts_dir: Path,
    dest_dir: Path,
    name: str = "tinylinux",
    mtime: int | None = None,
) -> Path:
    """Bundle the kernel image and initramfs into a release archive.

    Args:
        arch: Target architecture.
        version: Distribution version.
        artifacts_dir: Artifact directory of the architecture.
        dest_dir: Directory receiving the archive (the repository root).
        name: Distribution name.
        mtime: Reproducibility timestamp seed for members and gzip header.

    Returns:
        Path of the release archive.

    Raises:
        PackagingError: If the kernel image or initramfs is missing.
    """
    profile = get_arch_profile(arch)
    members = [artifacts_dir / profile.image_name, artifacts_dir / INITRAMFS_NAME]
    missing = [str(p) for p in members if not p.is_file()]
    if missing:
        raise PackagingError(
            f"Missing release inputs for {profile.arch.value}: {', '.join(missing)}",
            code="missing_inputs",
        )

    def normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.uid = info.gid = 0
        info.uname = info.gname = "root"
        if mtime is not None:
            info.mtime = mtime
        return info

    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / release_archive_name(name, version, profile.arch)
    with dest.open("wb") as raw, gzip.GzipFile(
        filename="",
        mode="wb",
        fileobj=raw,
        compresslevel=9,
        mtime=mtime if mtime is not None else 0,
    ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
        for member in members:
            tar.add(member, arcname=member.name, recursive=False, filter=normalize)

    logger.info("Wrote release archive %s", dest)
    return dest


__all__ = ["PackagingError", "pack_release", "release_archive_name"]

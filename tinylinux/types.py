"""Shared type definitions for tinylinux.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Architecture(str, Enum):
    """Supported target architectures."""

    X86_64 = "x86_64"
    AARCH64 = "aarch64"


class ToolchainVariant(str, Enum):
    """Prebuilt musl toolchain flavour."""

    NATIVE = "native"
    CROSS = "cross"


class SourceState(str, Enum):
    """Acquisition state of a third-party source package."""

    ABSENT = "absent"
    FETCHED = "fetched"
    EXTRACTED = "extracted"


class KernelBuildState(str, Enum):
    """Lifecycle of a single kernel build."""

    SOURCE_READY = "source-ready"
    CONFIGURED = "configured"
    BUILT = "built"
    EXTRACTED = "extracted"


class ArtifactKind(str, Enum):
    """Kind of artifact produced by a build."""

    KERNEL_IMAGE = "kernel-image"
    INITRAMFS = "initramfs"
    RELEASE_ARCHIVE = "release-archive"


class ConfigUpdateStatus(str, Enum):
    """Outcome of a best-effort kernel config update."""

    SUCCEEDED = "succeeded"
    FAILED_TOLERATED = "failed-tolerated"


@dataclass
class ArtifactInfo:
    """Information about a build artifact."""

    arch: Architecture
    kind: ArtifactKind
    path: Path
    size_bytes: int
    sha256: str

    @property
    def filename(self) -> str:
        """Return the artifact file name."""
        return self.path.name


@dataclass
class ConfigUpdateResult:
    """Result of a kernel config update for one architecture."""

    arch: Architecture
    status: ConfigUpdateStatus
    message: str
    code: str | None = None

    @property
    def succeeded(self) -> bool:
        """Check whether the update completed without a tolerated failure."""
        return self.status == ConfigUpdateStatus.SUCCEEDED


__all__ = [
    "Architecture",
    "ArtifactInfo",
    "ArtifactKind",
    "ConfigUpdateResult",
    "ConfigUpdateStatus",
    "KernelBuildState",
    "SourceState",
    "ToolchainVariant",
]

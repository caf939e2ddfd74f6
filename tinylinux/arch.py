"""Architecture lookup table.

Every architecture-aware stage takes an Architecture and reads its kernel and
toolchain attributes from ARCH_PROFILES. There is no fallback: anything that
is not a member of Architecture raises UnsupportedArchitectureError.
"""

from __future__ import annotations

from dataclasses import dataclass

from tinylinux.types import Architecture


class UnsupportedArchitectureError(ValueError):
    """Raised when an architecture identifier is not supported."""

    def __init__(self, arch: object, code: str = "unsupported_architecture") -> None:
        supported = ", ".join(a.value for a in Architecture)
        super().__init__(f"Unsupported architecture: {arch!r} (supported: {supported})")
        self.arch = arch
        self.code = code


@dataclass(frozen=True)
class ArchProfile:
    """Static attributes of a target architecture.

    Attributes:
        arch: The architecture.
        kernel_arch: Value of the kernel's ARCH= variable.
        image_path: Kernel image path relative to the kernel build directory.
        musl_triple: Target triple of the musl toolchain.
        curl_release_arch: Architecture suffix used by static curl releases.
    """

    arch: Architecture
    kernel_arch: str
    image_path: str
    musl_triple: str
    curl_release_arch: str

    @property
    def cross_prefix(self) -> str:
        """Cross-compile prefix, e.g. 'aarch64-linux-musl-'."""
        return f"{self.musl_triple}-"

    @property
    def image_name(self) -> str:
        """File name of the kernel image."""
        return self.image_path.rsplit("/", 1)[-1]


ARCH_PROFILES: dict[Architecture, ArchProfile] = {
    Architecture.X86_64: ArchProfile(
        arch=Architecture.X86_64,
        kernel_arch="x86",
        image_path="arch/x86/boot/bzImage",
        musl_triple="x86_64-linux-musl",
        curl_release_arch="amd64",
    ),
    Architecture.AARCH64: ArchProfile(
        arch=Architecture.AARCH64,
        kernel_arch="arm64",
        image_path="arch/arm64/boot/Image",
        musl_triple="aarch64-linux-musl",
        curl_release_arch="aarch64",
    ),
}

_missing = set(Architecture) - set(ARCH_PROFILES)
if _missing:
    raise RuntimeError(f"ARCH_PROFILES is missing {sorted(a.value for a in _missing)}")

# Spellings of the host machine name reported by different platforms
_HOST_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
}


def parse_architecture(value: str | Architecture) -> Architecture:
    """Convert a string to an Architecture.

    Args:
        value: Architecture name such as 'x86_64' or 'aarch64'.

    Returns:
        The matching Architecture member.

    Raises:
        UnsupportedArchitectureError: If the value is not a supported architecture.
    """
    if isinstance(value, Architecture):
        return value
    try:
        return Architecture(value)
    except ValueError:
        raise UnsupportedArchitectureError(value) from None


def get_arch_profile(arch: str | Architecture) -> ArchProfile:
    """Look up the profile of an architecture.

    Raises:
        UnsupportedArchitectureError: If the architecture is not supported.
    """
    return ARCH_PROFILES[parse_architecture(arch)]


def normalize_machine(machine: str) -> str:
    """Normalize a platform.machine() value to a toolchain architecture name."""
    machine = machine.strip().lower()
    return _HOST_ALIASES.get(machine, machine)


__all__ = [
    "ARCH_PROFILES",
    "ArchProfile",
    "UnsupportedArchitectureError",
    "get_arch_profile",
    "normalize_machine",
    "parse_architecture",
]

"""Immutable build plan.

The plan pins every input of a distribution build: component versions,
download locations, toolchain mirrors and the fixed metadata strings stamped
into the kernel. It is constructed once by get_build_plan() and passed
explicitly into every stage.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tinylinux import __version__
from tinylinux.arch import ArchProfile, parse_architecture
from tinylinux.config import Settings
from tinylinux.types import Architecture, ToolchainVariant


class SourceSpec(BaseModel):
    """A pinned third-party source or binary download."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    sha256: str | None = Field(default=None, pattern=r"^[0-9a-fA-F]{64}$")

    @property
    def dirname(self) -> str:
        """Directory name of the extracted source, '<name>-<version>'."""
        return f"{self.name}-{self.version}"

    @property
    def filename(self) -> str:
        """File name component of the download URL."""
        return self.url.rsplit("/", 1)[-1]


class BuildPlan(BaseModel):
    """Everything a full build needs besides the environment-derived settings."""

    model_config = ConfigDict(frozen=True)

    name: str = "tinylinux"
    version: str = __version__
    architectures: tuple[Architecture, ...] = (
        Architecture.X86_64,
        Architecture.AARCH64,
    )

    linux: SourceSpec = SourceSpec(
        name="linux",
        version="6.6.58",
        url="https://cdn.kernel.org/pub/linux/kernel/v6.x/linux-6.6.58.tar.xz",
    )
    toybox: SourceSpec = SourceSpec(
        name="toybox",
        version="0.8.11",
        url="https://landley.net/toybox/downloads/toybox-0.8.11.tar.gz",
    )
    dropbear: SourceSpec = SourceSpec(
        name="dropbear",
        version="2024.86",
        url="https://matt.ucc.asn.au/dropbear/releases/dropbear-2024.86.tar.bz2",
    )
    socat: SourceSpec = SourceSpec(
        name="socat",
        version="1.8.0.0",
        url="http://www.dest-unreach.org/socat/download/socat-1.8.0.0.tar.gz",
    )

    curl_version: str = "8.7.1"
    curl_url_template: str = (
        "https://github.com/moparisthebest/static-curl/releases/download/"
        "v{version}/curl-{arch}"
    )

    toolchain_release: str = "11.2.1"
    toolchain_mirror: str = "https://musl.cc"
    # The generic musl.cc toolchains only run on x86_64 hosts
    toolchain_mirror_aarch64_host: str = (
        "https://more.musl.cc/11.2.1/aarch64-linux-musl"
    )

    kbuild_user: str = "tinylinux"
    kbuild_host: str = "tinylinux"
    kbuild_version: str = "1"

    dropbear_programs: tuple[str, ...] = ("dropbear", "dropbearkey", "dbclient", "scp")
    socat_configure_cache: dict[str, str] = Field(
        default_factory=lambda: {"sc_cv_getprotobynumber_r": "1"}
    )

    @field_validator("architectures", mode="before")
    @classmethod
    def _parse_architectures(cls, value: object) -> object:
        if isinstance(value, (list, tuple)):
            return tuple(parse_architecture(v) for v in value)
        return value

    def sources(self) -> list[SourceSpec]:
        """Source trees needed by every full build."""
        return [self.linux, self.toybox, self.dropbear, self.socat]

    def curl_binary(self, profile: ArchProfile) -> SourceSpec:
        """Static HTTP client download for an architecture."""
        return SourceSpec(
            name=f"curl-{profile.curl_release_arch}",
            version=self.curl_version,
            url=self.curl_url_template.format(
                version=self.curl_version, arch=profile.curl_release_arch
            ),
        )

    def toolchain(
        self, profile: ArchProfile, variant: ToolchainVariant, host: str
    ) -> SourceSpec:
        """Prebuilt musl toolchain download for an architecture and host."""
        mirror = (
            self.toolchain_mirror_aarch64_host
            if host == Architecture.AARCH64.value
            else self.toolchain_mirror
        )
        name = f"{profile.musl_triple}-{variant.value}"
        return SourceSpec(
            name=name,
            version=self.toolchain_release,
            url=f"{mirror}/{name}.tgz",
        )


def get_build_plan(**overrides: object) -> BuildPlan:
    """Construct the build plan.

    Args:
        **overrides: Field values replacing the pinned defaults.

    Returns:
        Frozen BuildPlan instance.
    """
    return BuildPlan(**overrides)


def build_directory(settings: Settings, arch: Architecture, component: str) -> Path:
    """Return the build directory owned by (arch, component)."""
    return settings.build_dir / arch.value / component


def artifact_directory(settings: Settings, arch: Architecture) -> Path:
    """Return the artifact directory of an architecture."""
    return settings.artifacts_dir / arch.value


__all__ = [
    "BuildPlan",
    "SourceSpec",
    "artifact_directory",
    "build_directory",
    "get_build_plan",
]

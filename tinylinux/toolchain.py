"""Toolchain resolution.

This module handles:
- Detecting the host architecture
- Selecting the native or cross musl toolchain for a target architecture
- Choosing the toolchain release matching the host
- Installing the toolchain and exposing its tools and environment
"""

from __future__ import annotations

import logging
import os
import platform
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tinylinux.arch import get_arch_profile, normalize_machine, parse_architecture
from tinylinux.sources.service import ensure_source
from tinylinux.types import Architecture, ToolchainVariant

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.orm import Session

    from tinylinux.config import Settings
    from tinylinux.plan import BuildPlan, SourceSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolchainProfile:
    """Resolved toolchain for one target architecture.

    Attributes:
        arch: Target architecture.
        variant: Native or cross toolchain.
        root: Root directory of the extracted toolchain.
        cross_prefix: Target tool prefix, e.g. 'aarch64-linux-musl-'.
        tool_prefix: Prefix of the tool names actually shipped in bin/.
            Native toolchains ship unprefixed tools, so this is empty for them.
    """

    arch: Architecture
    variant: ToolchainVariant
    root: Path
    cross_prefix: str
    tool_prefix: str

    @property
    def bin_dir(self) -> Path:
        """Directory prepended to PATH."""
        return self.root / "bin"

    @property
    def cc(self) -> Path:
        """C compiler."""
        return self.bin_dir / f"{self.tool_prefix}gcc"

    @property
    def ar(self) -> Path:
        """Archiver."""
        return self.bin_dir / f"{self.tool_prefix}ar"

    @property
    def strip(self) -> Path:
        """Strip tool."""
        return self.bin_dir / f"{self.tool_prefix}strip"

    @property
    def host_triple(self) -> str:
        """Value for configure's --host option."""
        return self.cross_prefix.rstrip("-")

    def env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Build an environment with the toolchain first on PATH.

        Args:
            base: Base environment (defaults to os.environ).

        Returns:
            New environment with PATH, CC, AR and STRIP set.
        """
        env = dict(os.environ if base is None else base)
        path = env.get("PATH", os.defpath)
        env["PATH"] = f"{self.bin_dir}{os.pathsep}{path}"
        env["CC"] = str(self.cc)
        env["AR"] = str(self.ar)
        env["STRIP"] = str(self.strip)
        return env


def host_architecture(settings: Settings | None = None) -> str:
    """Return the normalized architecture of the build host."""
    if settings is not None and settings.host_arch:
        return normalize_machine(settings.host_arch)
    return normalize_machine(platform.machine())


def select_variant(arch: Architecture | str, host: str) -> ToolchainVariant:
    """Select the native toolchain when building for the host, else cross."""
    arch = parse_architecture(arch)
    if arch.value == normalize_machine(host):
        return ToolchainVariant.NATIVE
    return ToolchainVariant.CROSS


def toolchain_spec(arch: Architecture | str, plan: BuildPlan, host: str) -> SourceSpec:
    """Return the toolchain download for a target architecture and host."""
    profile = get_arch_profile(arch)
    host = normalize_machine(host)
    return plan.toolchain(profile, select_variant(profile.arch, host), host)


def resolve(arch: Architecture | str, root: Path, host: str) -> ToolchainProfile:
    """Resolve the toolchain profile of an installed toolchain.

    Args:
        arch: Target architecture.
        root: Root directory of the extracted toolchain.
        host: Host architecture.

    Returns:
        ToolchainProfile for the architecture.

    Raises:
        UnsupportedArchitectureError: If the architecture is not supported.
    """
    profile = get_arch_profile(arch)
    variant = select_variant(profile.arch, host)
    return ToolchainProfile(
        arch=profile.arch,
        variant=variant,
        root=root,
        cross_prefix=profile.cross_prefix,
        tool_prefix=profile.cross_prefix if variant is ToolchainVariant.CROSS else "",
    )


def link_strip(toolchain: ToolchainProfile) -> Path:
    """Create a generic `strip` symlink to the prefixed strip tool.

    Downstream makefiles call `strip` by its bare name.

    Returns:
        Path of the symlink.
    """
    link = toolchain.bin_dir / "strip"
    target = f"{toolchain.cross_prefix}strip"
    if link.is_symlink() or link.exists():
        if link.is_symlink() and os.readlink(link) == target:
            return link
        link.unlink()
    link.symlink_to(target)
    logger.debug("Linked %s -> %s", link, target)
    return link


def install_toolchain(
    session: Session,
    arch: Architecture | str,
    plan: BuildPlan,
    settings: Settings,
    client: httpx.Client | None = None,
) -> ToolchainProfile:
    """Ensure the toolchain for an architecture is installed.

    Args:
        session: Database session.
        arch: Target architecture.
        plan: Build plan.
        settings: Application settings.
        client: HTTPX client (creates one if not provided).

    Returns:
        ToolchainProfile ready for use.
    """
    host = host_architecture(settings)
    spec = toolchain_spec(arch, plan, host)
    record = ensure_source(session, spec, settings, client)

    toolchain = resolve(arch, record.source_root(), host)
    if toolchain.variant is ToolchainVariant.CROSS:
        link_strip(toolchain)

    logger.info(
        "Using %s toolchain for %s at %s",
        toolchain.variant.value,
        toolchain.arch.value,
        toolchain.root,
    )
    return toolchain


__all__ = [
    "ToolchainProfile",
    "host_architecture",
    "install_toolchain",
    "link_strip",
    "resolve",
    "select_variant",
    "toolchain_spec",
]

"""Top-level build drivers.

This module provides the two run modes:
- run_build(): acquire sources and toolchains, then build the kernel,
  assemble the root filesystem and package artifacts for each architecture
- run_config_update(): refresh the persisted kernel configs

Architectures are processed one after another. A full build fails fast: the
first error propagates and later architectures are not started. The config
update is best-effort and reports tolerated failures per architecture
instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tinylinux.arch import get_arch_profile, parse_architecture
from tinylinux.kernel.build import KernelBuild, KernelBuildError
from tinylinux.kernel.kconfig import KconfigError, load_overrides, update_config
from tinylinux.packaging.cpio import INITRAMFS_NAME, pack_initramfs
from tinylinux.packaging.manifest import (
    MANIFEST_NAME,
    artifact_info,
    generate_manifest,
    write_manifest,
)
from tinylinux.packaging.release import pack_release
from tinylinux.plan import artifact_directory
from tinylinux.rootfs import RootfsSources, assemble
from tinylinux.runner import CommandError
from tinylinux.sources.fetch import DownloadError, ExtractionError, VerificationError
from tinylinux.sources.service import OfflineModeError, ensure_source, fetch_binary
from tinylinux.toolchain import ToolchainProfile, install_toolchain
from tinylinux.types import (
    Architecture,
    ArtifactInfo,
    ArtifactKind,
    ConfigUpdateResult,
    ConfigUpdateStatus,
)

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.orm import Session

    from tinylinux.config import Settings
    from tinylinux.plan import BuildPlan

logger = logging.getLogger(__name__)

# Failures the config update tolerates; OSError covers toolchain links and
# config copies
CONFIG_UPDATE_TOLERATED = (
    OSError,
    CommandError,
    KconfigError,
    KernelBuildError,
    DownloadError,
    VerificationError,
    ExtractionError,
    OfflineModeError,
)


@dataclass
class ArchBuildResult:
    """Outputs of a full build for one architecture."""

    arch: Architecture
    rootfs: Path
    artifacts: list[ArtifactInfo] = field(default_factory=list)

    def artifact(self, kind: ArtifactKind) -> ArtifactInfo:
        """Return the artifact of the given kind."""
        for a in self.artifacts:
            if a.kind is kind:
                return a
        raise KeyError(kind)


def select_architectures(
    plan: BuildPlan, architectures: Iterable[str | Architecture] | None = None
) -> list[Architecture]:
    """Resolve requested architectures, defaulting to all in the plan.

    Raises:
        UnsupportedArchitectureError: If any requested value is not supported.
    """
    if not architectures:
        return list(plan.architectures)
    selected: list[Architecture] = []
    for value in architectures:
        arch = parse_architecture(value)
        if arch not in selected:
            selected.append(arch)
    return selected


def acquire_sources(
    session: Session,
    plan: BuildPlan,
    settings: Settings,
    client: httpx.Client | None = None,
) -> dict[str, Path]:
    """Ensure every source tree of the plan is present.

    Returns:
        Mapping of package name to extracted source root.
    """
    roots: dict[str, Path] = {}
    for spec in plan.sources():
        roots[spec.name] = ensure_source(session, spec, settings, client).source_root()
    return roots


def build_architecture(
    arch: Architecture,
    sources: dict[str, Path],
    toolchain: ToolchainProfile,
    plan: BuildPlan,
    settings: Settings,
    client: httpx.Client | None = None,
) -> ArchBuildResult:
    """Build, assemble and package one architecture."""
    profile = get_arch_profile(arch)
    seed = settings.source_date_epoch
    artifacts_dir = artifact_directory(settings, arch)

    kernel_image = KernelBuild(arch, sources["linux"], toolchain, settings, plan).run()

    curl_spec = plan.curl_binary(profile)
    curl_binary = fetch_binary(
        curl_spec,
        settings.cache_dir / "downloads" / curl_spec.dirname,
        settings,
        client,
    )

    rootfs = assemble(
        arch,
        RootfsSources(
            dropbear=sources["dropbear"],
            socat=sources["socat"],
            toybox=sources["toybox"],
        ),
        toolchain,
        settings,
        plan,
        curl_binary,
    )

    initramfs = pack_initramfs(rootfs, artifacts_dir / INITRAMFS_NAME, mtime=seed)
    release = pack_release(
        arch,
        plan.version,
        artifacts_dir,
        settings.repo_root,
        name=plan.name,
        mtime=seed,
    )

    artifacts = [
        kernel_image,
        artifact_info(arch, ArtifactKind.INITRAMFS, initramfs),
        artifact_info(arch, ArtifactKind.RELEASE_ARCHIVE, release),
    ]
    write_manifest(
        generate_manifest(arch, artifacts, plan.version, source_date_epoch=seed),
        artifacts_dir / MANIFEST_NAME,
    )
    return ArchBuildResult(arch=arch, rootfs=rootfs, artifacts=artifacts)


def run_build(
    session: Session,
    settings: Settings,
    plan: BuildPlan,
    architectures: Iterable[str | Architecture] | None = None,
    client: httpx.Client | None = None,
) -> list[ArchBuildResult]:
    """Run the full build for the selected architectures.

    Raises:
        UnsupportedArchitectureError: If a requested architecture is unknown.
        Any stage error; the first failure aborts the run.
    """
    selected = select_architectures(plan, architectures)
    logger.info("Building %s for %s", plan.version, ", ".join(a.value for a in selected))

    sources = acquire_sources(session, plan, settings, client)
    toolchains = {
        arch: install_toolchain(session, arch, plan, settings, client)
        for arch in selected
    }

    results: list[ArchBuildResult] = []
    for arch in selected:
        logger.info("=== %s ===", arch.value)
        results.append(
            build_architecture(arch, sources, toolchains[arch], plan, settings, client)
        )
    return results


def _tolerated(arch: Architecture, error: Exception) -> ConfigUpdateResult:
    logger.warning("Config update for %s failed (tolerated): %s", arch.value, error)
    code = getattr(error, "code", None)
    if code is None and isinstance(error, OSError):
        code = "os_error"
    return ConfigUpdateResult(
        arch=arch,
        status=ConfigUpdateStatus.FAILED_TOLERATED,
        message=str(error),
        code=code,
    )


def run_config_update(
    session: Session,
    settings: Settings,
    plan: BuildPlan,
    architectures: Iterable[str | Architecture] | None = None,
    client: httpx.Client | None = None,
) -> list[ConfigUpdateResult]:
    """Refresh the persisted kernel config of each selected architecture.

    Failures of the pipeline itself are reported as FAILED_TOLERATED results
    rather than raised.

    Raises:
        UnsupportedArchitectureError: If a requested architecture is unknown.
    """
    selected = select_architectures(plan, architectures)

    try:
        overrides = load_overrides(settings)
        kernel_src = ensure_source(session, plan.linux, settings, client).source_root()
    except CONFIG_UPDATE_TOLERATED as e:
        return [_tolerated(arch, e) for arch in selected]

    results: list[ConfigUpdateResult] = []
    for arch in selected:
        try:
            toolchain = install_toolchain(session, arch, plan, settings, client)
            persisted = update_config(
                arch, kernel_src, toolchain, settings, overrides
            )
        except CONFIG_UPDATE_TOLERATED as e:
            results.append(_tolerated(arch, e))
            continue
        results.append(
            ConfigUpdateResult(
                arch=arch,
                status=ConfigUpdateStatus.SUCCEEDED,
                message=f"Updated {persisted}",
            )
        )
    return results


__all__ = [
    "CONFIG_UPDATE_TOLERATED",
    "ArchBuildResult",
    "acquire_sources",
    "build_architecture",
    "run_build",
    "run_config_update",
    "select_architectures",
]

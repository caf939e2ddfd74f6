"""Kernel build pipeline.

This module handles:
- Seeding a working .config from the persisted per-architecture defconfig
- Resolving configuration defaults with `make olddefconfig`
- Building the kernel with reproducible metadata
- Persisting the minimized configuration and extracting the image

A KernelBuild moves through SOURCE_READY -> CONFIGURED -> BUILT -> EXTRACTED.
Each architecture gets its own instance and build directory.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from tinylinux.arch import get_arch_profile
from tinylinux.packaging.manifest import artifact_info
from tinylinux.plan import artifact_directory, build_directory
from tinylinux.runner import run_command
from tinylinux.types import Architecture, ArtifactInfo, ArtifactKind, KernelBuildState

if TYPE_CHECKING:
    from tinylinux.config import Settings
    from tinylinux.plan import BuildPlan
    from tinylinux.toolchain import ToolchainProfile

logger = logging.getLogger(__name__)

KERNEL_COMPONENT = "linux"

# Format understood by both uname output and `date -d` in the kernel scripts
TIMESTAMP_FORMAT = "%a %b %d %H:%M:%S UTC %Y"


class KernelBuildError(Exception):
    """Raised when the kernel pipeline cannot proceed."""

    def __init__(self, message: str, code: str = "kernel_build_error") -> None:
        super().__init__(message)
        self.code = code


def persisted_config_path(settings: Settings, arch: Architecture) -> Path:
    """Path of the version-controlled defconfig of an architecture."""
    return settings.kconfig_dir / f"{arch.value}.defconfig"


def kernel_build_directory(settings: Settings, arch: Architecture) -> Path:
    """Build directory (O=) of the kernel for an architecture."""
    return build_directory(settings, arch, KERNEL_COMPONENT)


def kbuild_timestamp(source_date_epoch: int | None) -> str:
    """Return KBUILD_BUILD_TIMESTAMP for the given seed.

    Falls back to the current time when no seed is set, so reproducible
    output is opt-in.
    """
    epoch = source_date_epoch if source_date_epoch is not None else int(time.time())
    return datetime.fromtimestamp(epoch, timezone.utc).strftime(TIMESTAMP_FORMAT)


def kernel_jobs(settings: Settings) -> int:
    """Return the kernel build parallelism."""
    return settings.jobs or os.cpu_count() or 1


def compose_kernel_make_command(
    kernel_src: Path,
    build_dir: Path,
    toolchain: ToolchainProfile,
    settings: Settings,
    targets: list[str] | None = None,
    jobs: int | None = None,
    metadata: dict[str, str] | None = None,
) -> list[str]:
    """Compose a kernel `make` command.

    Args:
        kernel_src: Kernel source tree.
        build_dir: Out-of-tree build directory.
        toolchain: Resolved toolchain.
        settings: Application settings (provides AWK).
        targets: Make targets (none builds the default target).
        jobs: Parallel jobs, omitted when None.
        metadata: Extra KBUILD_* variables.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    profile = get_arch_profile(toolchain.arch)

    cmd = [
        "make",
        "-C",
        str(kernel_src),
        f"O={build_dir}",
        f"ARCH={profile.kernel_arch}",
        f"CROSS_COMPILE={toolchain.tool_prefix}",
        f"AWK={settings.awk}",
    ]

    if jobs is not None:
        cmd.append(f"-j{jobs}")

    if metadata:
        cmd.extend(f"{key}={value}" for key, value in metadata.items())

    if targets:
        cmd.extend(targets)

    return cmd


def build_metadata(plan: BuildPlan, settings: Settings) -> dict[str, str]:
    """Return the fixed KBUILD_* metadata for a build."""
    return {
        "KBUILD_BUILD_TIMESTAMP": kbuild_timestamp(settings.source_date_epoch),
        "KBUILD_BUILD_VERSION": plan.kbuild_version,
        "KBUILD_BUILD_USER": plan.kbuild_user,
        "KBUILD_BUILD_HOST": plan.kbuild_host,
    }


def persist_defconfig(build_dir: Path, dest: Path) -> Path:
    """Copy the `savedefconfig` output back to the persisted store.

    Raises:
        KernelBuildError: If savedefconfig produced nothing.
    """
    defconfig = build_dir / "defconfig"
    if not defconfig.is_file():
        raise KernelBuildError(
            f"savedefconfig did not produce {defconfig}",
            code="missing_defconfig",
        )
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(defconfig, dest)
    logger.info("Saved minimized kernel config to %s", dest)
    return dest


class KernelBuild:
    """Kernel build for one architecture."""

    def __init__(
        self,
        arch: Architecture | str,
        kernel_src: Path,
        toolchain: ToolchainProfile,
        settings: Settings,
        plan: BuildPlan,
    ) -> None:
        self.profile = get_arch_profile(arch)
        self.arch = self.profile.arch
        if toolchain.arch != self.arch:
            raise KernelBuildError(
                f"Toolchain for {toolchain.arch.value} cannot build {self.arch.value}",
                code="toolchain_mismatch",
            )
        self.kernel_src = kernel_src
        self.toolchain = toolchain
        self.settings = settings
        self.plan = plan
        self.build_dir = kernel_build_directory(settings, self.arch)
        self.state = KernelBuildState.SOURCE_READY

    @property
    def config_path(self) -> Path:
        """Working configuration inside the build directory."""
        return self.build_dir / ".config"

    @property
    def persisted_config(self) -> Path:
        """Version-controlled configuration."""
        return persisted_config_path(self.settings, self.arch)

    @property
    def image_path(self) -> Path:
        """Kernel image produced by the build."""
        return self.build_dir / self.profile.image_path

    def _require(self, state: KernelBuildState, step: str) -> None:
        if self.state is not state:
            raise KernelBuildError(
                f"Cannot {step} {self.arch.value} kernel in state {self.state.value}",
                code="invalid_state",
            )

    def _make(
        self,
        step: str,
        targets: list[str] | None = None,
        jobs: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        cmd = compose_kernel_make_command(
            self.kernel_src,
            self.build_dir,
            self.toolchain,
            self.settings,
            targets=targets,
            jobs=jobs,
            metadata=metadata,
        )
        run_command(
            cmd,
            cwd=self.build_dir,
            log_path=self.build_dir / f"{step}.log",
            env=self.toolchain.env(),
        )

    def prepare_config(self) -> Path:
        """Seed a fresh build directory and resolve configuration defaults.

        Returns:
            Path of the resolved working config.

        Raises:
            KernelBuildError: If no persisted config exists.
            CommandError: If `make olddefconfig` fails.
        """
        self._require(KernelBuildState.SOURCE_READY, "configure")
        if not self.persisted_config.is_file():
            raise KernelBuildError(
                f"No kernel config for {self.arch.value}: {self.persisted_config}",
                code="missing_config",
            )

        logger.info("Configuring %s kernel in %s", self.arch.value, self.build_dir)
        if self.build_dir.exists():
            shutil.rmtree(self.build_dir)
        self.build_dir.mkdir(parents=True)
        shutil.copyfile(self.persisted_config, self.config_path)

        self._make("olddefconfig", targets=["olddefconfig"])
        self.state = KernelBuildState.CONFIGURED
        return self.config_path

    def build(self) -> Path:
        """Build the kernel and persist the minimized configuration.

        Returns:
            Path of the built kernel image.

        Raises:
            KernelBuildError: If the image is missing after the build.
            CommandError: If make fails.
        """
        self._require(KernelBuildState.CONFIGURED, "build")

        logger.info("Building %s kernel", self.arch.value)
        self._make(
            "build",
            jobs=kernel_jobs(self.settings),
            metadata=build_metadata(self.plan, self.settings),
        )
        if not self.image_path.is_file():
            raise KernelBuildError(
                f"Kernel build did not produce {self.image_path}",
                code="missing_image",
            )

        self._make("savedefconfig", targets=["savedefconfig"])
        persist_defconfig(self.build_dir, self.persisted_config)

        self.state = KernelBuildState.BUILT
        return self.image_path

    def extract(self) -> ArtifactInfo:
        """Copy the kernel image into the artifact directory.

        Returns:
            ArtifactInfo of the copied image.
        """
        self._require(KernelBuildState.BUILT, "extract")

        dest_dir = artifact_directory(self.settings, self.arch)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / self.profile.image_name
        shutil.copyfile(self.image_path, dest)

        self.state = KernelBuildState.EXTRACTED
        logger.info("Kernel image for %s at %s", self.arch.value, dest)
        return artifact_info(self.arch, ArtifactKind.KERNEL_IMAGE, dest)

    def run(self) -> ArtifactInfo:
        """Run all steps of the pipeline."""
        self.prepare_config()
        self.build()
        return self.extract()


__all__ = [
    "KERNEL_COMPONENT",
    "KernelBuild",
    "KernelBuildError",
    "build_metadata",
    "compose_kernel_make_command",
    "kbuild_timestamp",
    "kernel_build_directory",
    "kernel_jobs",
    "persist_defconfig",
    "persisted_config_path",
]

"""Root filesystem assembly.

This module handles:
- Resetting the per-architecture tree from the checked-in skeleton
- Building static dropbear, socat and toybox binaries with the musl toolchain
- Installing the static curl binary and the host CA bundle
- Removing documentation to keep the initramfs small

Every component is built in a fresh copy of its source inside a build
directory owned by (arch, component), so nothing leaks between runs.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tinylinux.arch import get_arch_profile
from tinylinux.plan import build_directory
from tinylinux.runner import run_command
from tinylinux.types import Architecture

if TYPE_CHECKING:
    from tinylinux.config import Settings
    from tinylinux.plan import BuildPlan
    from tinylinux.toolchain import ToolchainProfile

logger = logging.getLogger(__name__)

ROOTFS_COMPONENT = "rootfs"

CA_BUNDLE_DEST = "etc/ssl/certs/ca-certificates.crt"

# Documentation trees removed after installation
DOC_DIRS = ("usr/share/man", "usr/share/doc", "usr/man", "share/man", "share/doc")

DROPBEAR_CONFIGURE_FLAGS = [
    "--enable-static",
    "--disable-zlib",
    "--disable-lastlog",
    "--disable-utmp",
    "--disable-utmpx",
    "--disable-wtmp",
    "--disable-wtmpx",
    "--disable-pututline",
    "--disable-pututxline",
]


class RootfsError(Exception):
    """Raised when the root filesystem cannot be assembled."""

    def __init__(self, message: str, code: str = "rootfs_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class RootfsSources:
    """Extracted source trees used by the assembler."""

    dropbear: Path
    socat: Path
    toybox: Path


def rootfs_directory(settings: Settings, arch: Architecture) -> Path:
    """Return the root filesystem tree of an architecture."""
    return build_directory(settings, arch, ROOTFS_COMPONENT)


def reset_tree(skeleton: Path, rootfs: Path) -> Path:
    """Replace the tree with a fresh copy of the skeleton.

    Raises:
        RootfsError: If the skeleton does not exist.
    """
    if not skeleton.is_dir():
        raise RootfsError(f"Skeleton not found: {skeleton}", code="missing_skeleton")
    if rootfs.exists():
        shutil.rmtree(rootfs)
    rootfs.parent.mkdir(parents=True, exist_ok=True)
    # .keep files only hold empty directories in version control
    shutil.copytree(
        skeleton, rootfs, symlinks=True, ignore=shutil.ignore_patterns(".keep")
    )
    logger.info("Reset root filesystem %s from %s", rootfs, skeleton)
    return rootfs


def fresh_source_copy(src: Path, dest: Path) -> Path:
    """Copy a source tree into an empty working directory."""
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(src, dest, symlinks=True)
    return dest


def install_file(src: Path, dest: Path, mode: int = 0o644) -> Path:
    """Copy a file into the tree with the given mode."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)
    dest.chmod(mode)
    return dest


def dropbear_configure_command(toolchain: ToolchainProfile) -> list[str]:
    """Compose the dropbear configure command (no zlib, no login records)."""
    return [
        "./configure",
        f"--host={toolchain.host_triple}",
        "--prefix=/usr",
        *DROPBEAR_CONFIGURE_FLAGS,
    ]


def socat_configure_command(toolchain: ToolchainProfile, plan: BuildPlan) -> list[str]:
    """Compose the socat configure command.

    Probe results listed in plan.socat_configure_cache are forced because
    their auto-detection gives wrong answers under static musl linking.
    """
    forced = [f"{key}={value}" for key, value in sorted(plan.socat_configure_cache.items())]
    return [
        "./configure",
        f"--host={toolchain.host_triple}",
        "--prefix=/usr",
        "LDFLAGS=-static",
        *forced,
    ]


def build_dropbear(
    src: Path,
    rootfs: Path,
    toolchain: ToolchainProfile,
    settings: Settings,
    plan: BuildPlan,
) -> None:
    """Build a static multi-call dropbear and install it into the tree."""
    work = fresh_source_copy(src, build_directory(settings, toolchain.arch, "dropbear"))
    env = toolchain.env()
    make_vars = [f"PROGRAMS={' '.join(plan.dropbear_programs)}", "MULTI=1", "STATIC=1"]

    logger.info("Building dropbear for %s", toolchain.arch.value)
    run_command(
        dropbear_configure_command(toolchain),
        cwd=work,
        log_path=work / "configure.log",
        env=env,
    )
    run_command(["make", *make_vars], cwd=work, log_path=work / "make.log", env=env)
    run_command(
        ["make", "install", f"DESTDIR={rootfs}", *make_vars],
        cwd=work,
        log_path=work / "install.log",
        env=env,
    )


def build_socat(
    src: Path,
    rootfs: Path,
    toolchain: ToolchainProfile,
    settings: Settings,
    plan: BuildPlan,
) -> None:
    """Build a static socat and install it into the tree."""
    work = fresh_source_copy(src, build_directory(settings, toolchain.arch, "socat"))
    env = toolchain.env()

    logger.info("Building socat for %s", toolchain.arch.value)
    run_command(
        socat_configure_command(toolchain, plan),
        cwd=work,
        log_path=work / "configure.log",
        env=env,
    )
    run_command(["make", "socat"], cwd=work, log_path=work / "make.log", env=env)

    dest = install_file(work / "socat", rootfs / "usr" / "bin" / "socat", 0o755)
    run_command(
        [str(toolchain.strip), str(dest)],
        cwd=work,
        log_path=work / "make.log",
        env=env,
    )


def build_toybox(
    src: Path,
    rootfs: Path,
    toolchain: ToolchainProfile,
    settings: Settings,
) -> None:
    """Build a static toybox from the fixed config and install it into the tree.

    Raises:
        RootfsError: If the toybox config file is missing.
    """
    if not settings.toybox_config.is_file():
        raise RootfsError(
            f"Toybox config not found: {settings.toybox_config}",
            code="missing_toybox_config",
        )
    work = fresh_source_copy(src, build_directory(settings, toolchain.arch, "toybox"))
    shutil.copyfile(settings.toybox_config, work / ".config")

    # toybox prepends CROSS_COMPILE to CC and STRIP itself
    env = toolchain.env()
    env.update(
        CC="gcc",
        STRIP="strip",
        CROSS_COMPILE=toolchain.tool_prefix,
        LDFLAGS="--static",
    )

    logger.info("Building toybox for %s", toolchain.arch.value)
    run_command(["make", "toybox"], cwd=work, log_path=work / "make.log", env=env)
    run_command(
        ["make", "install", f"PREFIX={rootfs}"],
        cwd=work,
        log_path=work / "install.log",
        env=env,
    )


def install_ca_bundle(ca_bundle: Path, rootfs: Path) -> Path:
    """Install the host CA bundle into the tree.

    Raises:
        RootfsError: If the bundle does not exist on the host.
    """
    if not ca_bundle.is_file():
        raise RootfsError(f"CA bundle not found: {ca_bundle}", code="missing_ca_bundle")
    return install_file(ca_bundle, rootfs / CA_BUNDLE_DEST)


def remove_docs(rootfs: Path) -> list[Path]:
    """Remove documentation and manual pages from the tree."""
    removed: list[Path] = []
    for rel in DOC_DIRS:
        path = rootfs / rel
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            removed.append(path)
    if removed:
        logger.debug("Removed documentation: %s", [str(p) for p in removed])
    return removed


def assemble(
    arch: Architecture | str,
    sources: RootfsSources,
    toolchain: ToolchainProfile,
    settings: Settings,
    plan: BuildPlan,
    curl_binary: Path,
) -> Path:
    """Assemble the complete root filesystem of an architecture.

    Args:
        arch: Target architecture.
        sources: Extracted dropbear, socat and toybox trees.
        toolchain: Resolved toolchain for the architecture.
        settings: Application settings.
        plan: Build plan.
        curl_binary: Downloaded static curl for the architecture.

    Returns:
        Path of the assembled tree.

    Raises:
        RootfsError: If an input is missing.
        CommandError: If a component build fails.
    """
    profile = get_arch_profile(arch)
    if toolchain.arch != profile.arch:
        raise RootfsError(
            f"Toolchain for {toolchain.arch.value} cannot build {profile.arch.value}",
            code="toolchain_mismatch",
        )

    rootfs = reset_tree(settings.skeleton_dir, rootfs_directory(settings, profile.arch))

    build_dropbear(sources.dropbear, rootfs, toolchain, settings, plan)
    build_socat(sources.socat, rootfs, toolchain, settings, plan)
    build_toybox(sources.toybox, rootfs, toolchain, settings)

    if not curl_binary.is_file():
        raise RootfsError(f"curl binary not found: {curl_binary}", code="missing_curl")
    install_file(curl_binary, rootfs / "usr" / "bin" / "curl", 0o755)
    install_ca_bundle(settings.ca_bundle, rootfs)
    remove_docs(rootfs)

    logger.info("Assembled %s root filesystem at %s", profile.arch.value, rootfs)
    return rootfs


__all__ = [
    "CA_BUNDLE_DEST",
    "DOC_DIRS",
    "RootfsError",
    "RootfsSources",
    "assemble",
    "build_dropbear",
    "build_socat",
    "build_toybox",
    "dropbear_configure_command",
    "install_ca_bundle",
    "remove_docs",
    "reset_tree",
    "rootfs_directory",
    "socat_configure_command",
]

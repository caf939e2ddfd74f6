"""Kernel config update pipeline.

Maintainer mode refreshing the version-controlled defconfigs against the
current kernel source tree. A first run seeds the working config from the
persisted defconfig plus any validated overrides; later runs ask about
symbols the kernel introduced since. Either way the minimized result is
copied back to config/kernel/<arch>.defconfig.

Only the persisted defconfig and the kernel build directory's configuration
are touched; kernel images and artifacts are left alone.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from tinylinux.arch import get_arch_profile
from tinylinux.kernel.build import (
    compose_kernel_make_command,
    kernel_build_directory,
    persist_defconfig,
    persisted_config_path,
)
from tinylinux.runner import run_command

if TYPE_CHECKING:
    from tinylinux.config import Settings
    from tinylinux.toolchain import ToolchainProfile
    from tinylinux.types import Architecture

logger = logging.getLogger(__name__)

KCONFIG_KEY_PATTERN = re.compile(r"^CONFIG_[A-Z0-9_]+$")
KCONFIG_VALUE_PATTERN = re.compile(
    r'^(?:[ymn]|-?\d+|0x[0-9a-fA-F]+|"(?:[^"\\\n]|\\.)*")$'
)
KCONFIG_BARE_PATTERN = re.compile(r"^(?:[ymn]|-?\d+|0x[0-9a-fA-F]+)$")


class KconfigError(Exception):
    """Raised when kernel config overrides or files are invalid."""

    def __init__(self, message: str, code: str = "kconfig_error") -> None:
        super().__init__(message)
        self.code = code


def quote_string(value: str) -> str:
    """Quote a plain string as a kernel config string value."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class KconfigOverride(BaseModel):
    """A single kernel configuration entry forced into a working config."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: str

    @field_validator("key")
    @classmethod
    def _check_key(cls, value: str) -> str:
        if not KCONFIG_KEY_PATTERN.match(value):
            raise ValueError(f"invalid kernel config symbol: {value!r}")
        return value

    @field_validator("value", mode="before")
    @classmethod
    def _check_value(cls, value: object) -> str:
        # YAML turns yes/no into booleans
        if isinstance(value, bool):
            value = "y" if value else "n"
        elif isinstance(value, int):
            value = str(value)
        if not isinstance(value, str):
            raise ValueError(f"invalid kernel config value: {value!r}")
        if not value.startswith('"') and not KCONFIG_BARE_PATTERN.fullmatch(value):
            value = quote_string(value)
        if not KCONFIG_VALUE_PATTERN.fullmatch(value):
            raise ValueError(f"invalid kernel config value: {value!r}")
        return value

    def render(self) -> str:
        """Render the entry as a .config line."""
        if self.value == "n":
            return f"# {self.key} is not set"
        return f"{self.key}={self.value}"


def parse_overrides(mapping: dict[str, object]) -> list[KconfigOverride]:
    """Validate a mapping of kernel config overrides.

    Raises:
        KconfigError: If any entry is invalid.
    """
    overrides: list[KconfigOverride] = []
    for key, value in mapping.items():
        try:
            overrides.append(KconfigOverride(key=key, value=value))  # type: ignore[arg-type]
        except ValidationError as e:
            raise KconfigError(
                f"Invalid kernel config override {key}: {e.errors()[0]['msg']}",
                code="invalid_override",
            ) from e
    return overrides


def load_overrides_file(path: Path) -> list[KconfigOverride]:
    """Load kernel config overrides from a YAML mapping file.

    Raises:
        KconfigError: If the file cannot be read or is not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise KconfigError(
            f"Failed to read overrides file {path}: {e}",
            code="overrides_file_error",
        ) from e

    if data is None:
        return []
    if not isinstance(data, dict):
        raise KconfigError(
            f"Overrides file {path} must contain a mapping",
            code="overrides_file_error",
        )
    return parse_overrides(data)


def load_overrides(settings: Settings) -> list[KconfigOverride]:
    """Collect the configured overrides; the file wins on duplicate keys."""
    merged: dict[str, KconfigOverride] = {
        o.key: o for o in parse_overrides(dict(settings.kconfig_overrides))
    }
    if settings.kconfig_overrides_file is not None:
        for o in load_overrides_file(settings.kconfig_overrides_file):
            merged[o.key] = o
    return list(merged.values())


def append_overrides(config_path: Path, overrides: list[KconfigOverride]) -> None:
    """Append override entries to a working config.

    Later entries win when the kernel resolves the config, so appended
    entries replace earlier values of the same symbol.
    """
    if not overrides:
        return
    lines = [o.render() for o in overrides]
    with config_path.open("a", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
    logger.info("Applied %d kernel config override(s)", len(overrides))


def update_config(
    arch: Architecture | str,
    kernel_src: Path,
    toolchain: ToolchainProfile,
    settings: Settings,
    overrides: list[KconfigOverride] | None = None,
) -> Path:
    """Refresh the persisted kernel config of one architecture.

    Args:
        arch: Target architecture.
        kernel_src: Kernel source tree.
        toolchain: Resolved toolchain.
        settings: Application settings.
        overrides: Entries appended when seeding a new working config.

    Returns:
        Path of the updated persisted config.

    Raises:
        KconfigError: If no persisted config exists to seed from.
        CommandError: If a make step fails.
    """
    profile = get_arch_profile(arch)
    build_dir = kernel_build_directory(settings, profile.arch)
    working = build_dir / ".config"
    persisted = persisted_config_path(settings, profile.arch)
    env = toolchain.env()

    def make(*targets: str, log: str | None = None) -> None:
        cmd = compose_kernel_make_command(
            kernel_src, build_dir, toolchain, settings, targets=list(targets)
        )
        log_path = build_dir / f"{log}.log" if log else None
        run_command(cmd, cwd=build_dir, log_path=log_path, env=env)

    if not working.is_file():
        if not persisted.is_file():
            raise KconfigError(
                f"No kernel config for {profile.arch.value}: {persisted}",
                code="missing_config",
            )
        logger.info("Seeding %s working config from %s", profile.arch.value, persisted)
        build_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(persisted, working)
        append_overrides(working, overrides or [])
        make("olddefconfig", log="olddefconfig")
    else:
        logger.info("Updating existing %s working config", profile.arch.value)
        # Both steps talk to the operator, so output is not captured
        make("listnewconfig")
        make("oldconfig")

    make("savedefconfig", log="savedefconfig")
    return persist_defconfig(build_dir, persisted)


__all__ = [
    "KconfigError",
    "KconfigOverride",
    "append_overrides",
    "load_overrides",
    "load_overrides_file",
    "parse_overrides",
    "update_config",
]

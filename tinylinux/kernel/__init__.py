"""Kernel module.

This module handles:
- The per-architecture kernel build pipeline
- The maintainer config update pipeline
"""

from tinylinux.kernel.build import KernelBuild, KernelBuildError
from tinylinux.kernel.kconfig import KconfigError, KconfigOverride, update_config

__all__ = [
    "KconfigError",
    "KconfigOverride",
    "KernelBuild",
    "KernelBuildError",
    "update_config",
]

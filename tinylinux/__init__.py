"""tinylinux - a statically linked Linux distribution builder.

This package orchestrates cross toolchains, third-party sources, the kernel
configuration lifecycle and root filesystem packaging for a small fixed set
of components and target architectures.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

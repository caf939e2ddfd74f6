"""Initramfs serialization.

Writes a directory tree as a cpio archive in the portable ASCII "newc"
format understood by the kernel's initramfs unpacker, compressed with gzip at
maximum level. Output is deterministic: members are ordered by path, owned by
root, numbered sequentially, and timestamps can be pinned.
"""

from __future__ import annotations

import gzip
import logging
import os
import stat
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

NEWC_MAGIC = b"070701"
TRAILER_NAME = "TRAILER!!!"
INITRAMFS_NAME = "initramfs.cpio.gz"

# Chunk size for copying file contents
COPY_CHUNK_SIZE = 64 * 1024


class CpioError(Exception):
    """Raised when a tree cannot be serialized."""

    def __init__(self, message: str, code: str = "cpio_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class DeviceNode:
    """A device node archived without a matching file in the tree.

    Creating device nodes on disk needs root; the kernel unpacker creates
    them from the archive instead.
    """

    name: str
    major: int
    minor: int
    mode: int = stat.S_IFCHR | 0o600


# /init needs a console before devtmpfs is mounted
CONSOLE_NODE = DeviceNode("dev/console", major=5, minor=1)


def _padding(length: int) -> bytes:
    return b"\0" * (-length % 4)


def newc_header(
    name: str,
    ino: int,
    mode: int,
    mtime: int,
    filesize: int,
    nlink: int = 1,
    uid: int = 0,
    gid: int = 0,
    rdevmajor: int = 0,
    rdevminor: int = 0,
) -> bytes:
    """Encode a newc header followed by the padded member name.

    Returns:
        Header bytes, a multiple of 4 in length.
    """
    encoded_name = name.encode("utf-8") + b"\0"
    fields = (
        ino,
        mode,
        uid,
        gid,
        nlink,
        mtime,
        filesize,
        0,  # devmajor
        0,  # devminor
        rdevmajor,
        rdevminor,
        len(encoded_name),
        0,  # check
    )
    header = NEWC_MAGIC + b"".join(b"%08X" % value for value in fields)
    return header + encoded_name + _padding(len(header) + len(encoded_name))


def iter_tree(root: Path) -> list[tuple[Path, str]]:
    """List the entries of a tree in archive order.

    Directories precede their contents and siblings are sorted by name.
    Symlinks are listed, never followed.

    Returns:
        List of (path, archive name) pairs, excluding the root itself.
    """
    entries: list[tuple[Path, str]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        current = Path(dirpath)
        names = sorted(dirnames + filenames)
        for name in names:
            path = current / name
            entries.append((path, path.relative_to(root).as_posix()))
    entries.sort(key=lambda entry: entry[1].split("/"))
    return entries


class CpioWriter:
    """Streaming writer of newc cpio archives."""

    def __init__(self, fileobj: BinaryIO, mtime: int | None = None) -> None:
        """Initialize the writer.

        Args:
            fileobj: Binary stream receiving the archive.
            mtime: Upper bound for member timestamps, if set.
        """
        self.fileobj = fileobj
        self.mtime = mtime
        self._next_ino = 1
        self.count = 0

    def _member_mtime(self, st: os.stat_result) -> int:
        if self.mtime is None:
            return int(st.st_mtime)
        return min(int(st.st_mtime), self.mtime)

    def add(self, path: Path, arcname: str) -> None:
        """Add a single filesystem entry.

        Raises:
            CpioError: If the entry type is not supported.
        """
        st = path.lstat()
        mode = st.st_mode
        ino = self._next_ino
        self._next_ino += 1
        mtime = self._member_mtime(st)

        if stat.S_ISDIR(mode):
            self.fileobj.write(newc_header(arcname, ino, mode, mtime, 0, nlink=2))
        elif stat.S_ISLNK(mode):
            target = os.readlink(path).encode("utf-8")
            self.fileobj.write(newc_header(arcname, ino, mode, mtime, len(target)))
            self.fileobj.write(target + _padding(len(target)))
        elif stat.S_ISREG(mode):
            size = st.st_size
            self.fileobj.write(newc_header(arcname, ino, mode, mtime, size))
            written = 0
            with path.open("rb") as f:
                while chunk := f.read(COPY_CHUNK_SIZE):
                    self.fileobj.write(chunk)
                    written += len(chunk)
            if written != size:
                raise CpioError(f"{path} changed while archiving", code="file_changed")
            self.fileobj.write(_padding(size))
        elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode) or stat.S_ISFIFO(mode):
            self.fileobj.write(
                newc_header(
                    arcname,
                    ino,
                    mode,
                    mtime,
                    0,
                    rdevmajor=os.major(st.st_rdev),
                    rdevminor=os.minor(st.st_rdev),
                )
            )
        else:
            raise CpioError(f"Unsupported file type: {path}", code="unsupported_type")

        self.count += 1

    def add_node(self, node: DeviceNode) -> None:
        """Add a device node that does not exist on disk."""
        ino = self._next_ino
        self._next_ino += 1
        self.fileobj.write(
            newc_header(
                node.name,
                ino,
                node.mode,
                self.mtime if self.mtime is not None else 0,
                0,
                rdevmajor=node.major,
                rdevminor=node.minor,
            )
        )
        self.count += 1

    def close(self) -> None:
        """Write the trailer entry."""
        self.fileobj.write(newc_header(TRAILER_NAME, 0, 0, 0, 0, nlink=1))


def write_cpio(
    root: Path,
    fileobj: BinaryIO,
    mtime: int | None = None,
    devices: Sequence[DeviceNode] = (),
) -> int:
    """Serialize a directory tree as a newc cpio archive.

    Args:
        root: Directory to archive.
        fileobj: Binary stream receiving the archive.
        mtime: Upper bound for member timestamps, if set.
        devices: Device nodes merged into the tree. A node is skipped when
            the tree already has an entry of that name or lacks its parent
            directory.

    Returns:
        Number of members written, excluding the trailer.
    """
    entries: list[tuple[str, Path | DeviceNode]] = [
        (arcname, path) for path, arcname in iter_tree(root)
    ]
    names = {arcname for arcname, _ in entries}
    for node in devices:
        parent = node.name.rpartition("/")[0]
        if node.name in names:
            continue
        if parent and parent not in names:
            logger.warning(
                "Skipping %s: no %s directory in %s", node.name, parent, root
            )
            continue
        entries.append((node.name, node))
    entries.sort(key=lambda entry: entry[0].split("/"))

    writer = CpioWriter(fileobj, mtime=mtime)
    for arcname, item in entries:
        if isinstance(item, DeviceNode):
            writer.add_node(item)
        else:
            writer.add(item, arcname)
    writer.close()
    return writer.count


def pack_initramfs(
    rootfs: Path,
    dest: Path,
    mtime: int | None = None,
    devices: Sequence[DeviceNode] = (CONSOLE_NODE,),
) -> Path:
    """Write a gzip-compressed newc initramfs of a tree.

    Args:
        rootfs: Assembled root filesystem.
        dest: Output path, conventionally initramfs.cpio.gz.
        mtime: Reproducibility timestamp seed; also used as the gzip
            header time (0 when unset).
        devices: Device nodes added to the archive, /dev/console by default.

    Returns:
        Path of the written image.

    Raises:
        CpioError: If the tree is missing or contains unsupported entries.
    """
    if not rootfs.is_dir():
        raise CpioError(f"Root filesystem not found: {rootfs}", code="missing_rootfs")

    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("wb") as raw, gzip.GzipFile(
        filename="",
        mode="wb",
        fileobj=raw,
        compresslevel=9,
        mtime=mtime if mtime is not None else 0,
    ) as gz:
        count = write_cpio(rootfs, gz, mtime=mtime, devices=devices)  # type: ignore[arg-type]

    logger.info("Wrote initramfs %s (%d entries)", dest, count)
    return dest


__all__ = [
    "CONSOLE_NODE",
    "INITRAMFS_NAME",
    "CpioError",
    "CpioWriter",
    "DeviceNode",
    "iter_tree",
    "newc_header",
    "pack_initramfs",
    "write_cpio",
]

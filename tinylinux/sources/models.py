"""SourcePackage ORM model.

Each row is the completion record of one downloaded source tree or toolchain,
so a partially fetched or extracted package is never mistaken for a ready one.
"""

from datetime import datetime
from pathlib import Path

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tinylinux.db import Base
from tinylinux.sources.fetch import ExtractionError
from tinylinux.types import SourceState


class SourcePackage(Base):
    """ORM model for cached third-party source packages.

    Attributes:
        id: Primary key.
        name: Package name (e.g., 'linux').
        version: Package version (e.g., '6.6.58').
        url: URL the archive was downloaded from.
        archive_path: Local path of the downloaded archive.
        root_dir: Local path of the extracted source root.
        checksum: SHA-256 checksum of the downloaded archive.
        state: Current state (absent, fetched, extracted).
        fetched_at: Timestamp of the completed download.
        extracted_at: Timestamp of the completed extraction.
    """

    __tablename__ = "source_packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(50), nullable=False)

    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    archive_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    root_dir: Mapped[str | None] = mapped_column(String(500), nullable=True)
    checksum: Mapped[str | None] = mapped_column(String(128), nullable=True)

    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SourceState.ABSENT.value
    )

    fetched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    extracted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_source_packages_name_version", "name", "version", unique=True),
    )

    def __repr__(self) -> str:
        """Return string representation of SourcePackage."""
        return (
            f"<SourcePackage(id={self.id}, name='{self.name}', "
            f"version='{self.version}', state='{self.state}')>"
        )

    def mark_fetched(self, archive_path: str, checksum: str, at: datetime) -> None:
        """Record a completed download."""
        self.archive_path = archive_path
        self.checksum = checksum
        self.fetched_at = at
        self.state = SourceState.FETCHED.value

    def mark_extracted(self, root_dir: str, at: datetime) -> None:
        """Record a completed extraction."""
        self.root_dir = root_dir
        self.extracted_at = at
        self.state = SourceState.EXTRACTED.value

    def mark_absent(self) -> None:
        """Forget any previous acquisition."""
        self.archive_path = None
        self.root_dir = None
        self.state = SourceState.ABSENT.value

    def is_extracted(self) -> bool:
        """Check if this package has been fully extracted."""
        return self.state == SourceState.EXTRACTED.value

    def source_root(self) -> Path:
        """Return the extracted source root.

        Raises:
            ExtractionError: If the package has not been extracted.
        """
        if not self.is_extracted() or self.root_dir is None:
            raise ExtractionError(
                f"{self.name}-{self.version} has not been extracted",
                code="not_extracted",
            )
        return Path(self.root_dir)


__all__ = ["SourcePackage"]

"""Source acquisition service.

This module provides high-level APIs for third-party sources:
- ensure_source(): Ensure a source tree is downloaded and extracted
- fetch_binary(): Ensure a single prebuilt binary is downloaded
- list_sources(): List completion records

Acquisition state is tracked in the database. A package is only reused when
its record says it was fully extracted and the directory is still present.
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from tinylinux.config import get_settings
from tinylinux.sources.fetch import (
    DownloadError,
    ExtractionError,
    VerificationError,
    compute_file_sha256,
    download_file,
    extract_archive,
)
from tinylinux.sources.models import SourcePackage
from tinylinux.types import SourceState

if TYPE_CHECKING:
    from tinylinux.config import Settings
    from tinylinux.plan import SourceSpec

logger = logging.getLogger(__name__)


class OfflineModeError(Exception):
    """Raised when download is required but offline mode is enabled."""

    def __init__(
        self,
        message: str = "Cannot download in offline mode",
        code: str = "offline_mode",
    ) -> None:
        """Initialize OfflineModeError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


@contextmanager
def source_lock(cache_dir: Path, name: str, version: str) -> Iterator[None]:
    """Acquire an exclusive lock for acquiring a source package.

    Uses a file-based lock so two invocations never download or extract the
    same package at once. The lock file is stored in the cache directory.

    Args:
        cache_dir: Root cache directory.
        name: Package name.
        version: Package version.

    Yields:
        None when lock is acquired.
    """
    lock_dir = cache_dir / ".locks"
    lock_dir.mkdir(parents=True, exist_ok=True)

    safe_name = f"{name}-{version}.lock".replace("/", "_")
    lock_file = lock_dir / safe_name

    logger.debug("Acquiring lock for %s-%s", name, version)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        logger.debug("Lock acquired for %s-%s", name, version)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        logger.debug("Lock released for %s-%s", name, version)


@contextmanager
def _http_client(client: httpx.Client | None) -> Iterator[httpx.Client]:
    if client is not None:
        yield client
        return
    with httpx.Client(follow_redirects=True) as owned:
        yield owned


def _get_record(session: Session, name: str, version: str) -> SourcePackage | None:
    stmt = select(SourcePackage).where(
        SourcePackage.name == name,
        SourcePackage.version == version,
    )
    return session.execute(stmt).scalars().first()


def _ready(record: SourcePackage | None) -> SourcePackage | None:
    if record is None or not record.is_extracted() or record.root_dir is None:
        return None
    return record if Path(record.root_dir).is_dir() else None


def get_source(session: Session, name: str, version: str) -> SourcePackage | None:
    """Get the completion record of a source package, if any."""
    return _get_record(session, name, version)


def list_sources(
    session: Session,
    state: SourceState | None = None,
) -> list[SourcePackage]:
    """List source completion records.

    Args:
        session: Database session.
        state: Filter by state (optional).

    Returns:
        List of SourcePackage records ordered by name and version.
    """
    stmt = select(SourcePackage)
    if state is not None:
        stmt = stmt.where(SourcePackage.state == state.value)
    stmt = stmt.order_by(SourcePackage.name, SourcePackage.version)
    return list(session.execute(stmt).scalars().all())


def ensure_source(
    session: Session,
    spec: SourceSpec,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> SourcePackage:
    """Ensure a source package is downloaded and extracted.

    This is the main entry point for source acquisition. It:
    1. Returns immediately if the completion record says the package is
       extracted and the directory still exists
    2. Otherwise acquires a lock, downloads the archive unless a completed
       download is already recorded, and extracts it
    3. Commits the record after every state transition

    Args:
        session: Database session.
        spec: Pinned source to acquire.
        settings: Application settings (uses defaults if not provided).
        client: HTTPX client (creates one if not provided).

    Returns:
        SourcePackage record in extracted state.

    Raises:
        OfflineModeError: If a download is required but offline mode is enabled.
        DownloadError: If download fails.
        VerificationError: If checksum verification fails.
        ExtractionError: If extraction fails.
    """
    if settings is None:
        settings = get_settings()

    ready = _ready(_get_record(session, spec.name, spec.version))
    if ready is not None:
        logger.info("Using cached source: %s", spec.dirname)
        return ready

    with source_lock(settings.cache_dir, spec.name, spec.version):
        # Re-check after acquiring lock (another process may have finished)
        session.expire_all()
        record = _get_record(session, spec.name, spec.version)
        ready = _ready(record)
        if ready is not None:
            logger.info("Source became available while waiting for lock: %s", spec.dirname)
            return ready

        if record is None:
            record = SourcePackage(
                name=spec.name,
                version=spec.version,
                url=spec.url,
                state=SourceState.ABSENT.value,
            )
            session.add(record)
            session.commit()
        elif record.is_extracted():
            logger.warning(
                "Source directory missing, re-acquiring: %s", record.root_dir
            )
            record.mark_absent()
            session.commit()

        archive_path = settings.cache_dir / "downloads" / spec.filename
        needs_fetch = (
            record.state != SourceState.FETCHED.value
            or record.url != spec.url
            or not archive_path.is_file()
        )

        try:
            if needs_fetch:
                if settings.offline:
                    raise OfflineModeError(
                        f"Cannot download {spec.dirname} in offline mode"
                    )
                with _http_client(client) as http_client:
                    result = download_file(
                        http_client,
                        spec.url,
                        archive_path,
                        expected_checksum=spec.sha256,
                        timeout=settings.download_timeout,
                    )
                if spec.sha256 is None:
                    logger.warning(
                        "No pinned checksum for %s; recorded sha256 %s",
                        spec.dirname,
                        result.checksum,
                    )
                record.url = spec.url
                record.mark_fetched(
                    str(archive_path), result.checksum, datetime.now(timezone.utc)
                )
                session.commit()
            else:
                logger.info("Resuming %s from downloaded archive", spec.dirname)

            root_dir = extract_archive(
                archive_path, settings.cache_dir / "sources" / spec.dirname
            )
            record.mark_extracted(str(root_dir), datetime.now(timezone.utc))
            session.commit()

        except (DownloadError, VerificationError, ExtractionError) as e:
            session.commit()
            logger.error("Failed to acquire %s: %s", spec.dirname, e)
            raise

        logger.info("Source ready: %s at %s", spec.dirname, root_dir)
        return record


def fetch_binary(
    spec: SourceSpec,
    dest: Path,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> Path:
    """Ensure a prebuilt binary is downloaded to dest.

    An existing file is reused when it matches the pinned checksum, or
    unconditionally when no checksum is pinned.

    Args:
        spec: Pinned binary download.
        dest: Destination path.
        settings: Application settings (uses defaults if not provided).
        client: HTTPX client (creates one if not provided).

    Returns:
        Path to the downloaded binary.

    Raises:
        OfflineModeError: If a download is required but offline mode is enabled.
        DownloadError: If download fails.
        VerificationError: If checksum verification fails.
    """
    if settings is None:
        settings = get_settings()

    if dest.is_file():
        if spec.sha256 is None or compute_file_sha256(dest) == spec.sha256.lower():
            logger.info("Using cached binary: %s", dest)
            return dest
        logger.warning("Cached binary %s does not match pinned checksum", dest)

    if settings.offline:
        raise OfflineModeError(f"Cannot download {spec.dirname} in offline mode")

    with _http_client(client) as http_client:
        download_file(
            http_client,
            spec.url,
            dest,
            expected_checksum=spec.sha256,
            timeout=settings.download_timeout,
        )
    return dest


__all__ = [
    "OfflineModeError",
    "ensure_source",
    "fetch_binary",
    "get_source",
    "list_sources",
    "source_lock",
]

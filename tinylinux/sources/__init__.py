"""Source acquisition module.

This module handles:
- Downloading pinned source archives and prebuilt binaries
- Extracting archives into the cache
- Tracking fetch/extract completion records in the database
- Locking against concurrent acquisition of the same package
"""

from tinylinux.sources.fetch import (
    DownloadError,
    DownloadResult,
    ExtractionError,
    VerificationError,
    download_file,
    extract_archive,
)
from tinylinux.sources.models import SourcePackage
from tinylinux.sources.service import (
    OfflineModeError,
    ensure_source,
    fetch_binary,
    get_source,
    list_sources,
    source_lock,
)

__all__ = [
    # Models
    "SourcePackage",
    # Fetch module
    "DownloadError",
    "DownloadResult",
    "ExtractionError",
    "VerificationError",
    "download_file",
    "extract_archive",
    # Service module
    "OfflineModeError",
    "ensure_source",
    "fetch_binary",
    "get_source",
    "list_sources",
    "source_lock",
]

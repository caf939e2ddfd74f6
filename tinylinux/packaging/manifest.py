"""Artifact records and manifest generation.

This module handles:
- Recording size and checksum of produced artifacts
- Generating per-architecture JSON manifests
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from tinylinux.sources.fetch import compute_file_sha256
from tinylinux.types import Architecture, ArtifactInfo, ArtifactKind

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


def artifact_info(arch: Architecture, kind: ArtifactKind, path: Path) -> ArtifactInfo:
    """Describe a produced artifact file."""
    return ArtifactInfo(
        arch=arch,
        kind=kind,
        path=path,
        size_bytes=path.stat().st_size,
        sha256=compute_file_sha256(path),
    )


def generate_manifest(
    arch: Architecture,
    artifacts: list[ArtifactInfo],
    version: str,
    source_date_epoch: int | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a build manifest.

    Args:
        arch: Target architecture.
        artifacts: Artifacts produced for the architecture.
        version: Distribution version.
        source_date_epoch: Reproducibility seed; used as generation time if set.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    if source_date_epoch is not None:
        generated = datetime.fromtimestamp(source_date_epoch, timezone.utc)
    else:
        generated = datetime.now(timezone.utc)

    manifest: dict[str, Any] = {
        "version": version,
        "arch": arch.value,
        "generated_at": generated.isoformat(),
        "artifacts": [
            {
                "filename": a.filename,
                "kind": a.kind.value,
                "size_bytes": a.size_bytes,
                "sha256": a.sha256,
            }
            for a in artifacts
        ],
    }
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
    }
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "MANIFEST_NAME",
    "artifact_info",
    "generate_manifest",
    "write_manifest",
]

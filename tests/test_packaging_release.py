"""Tests for release archives and manifests."""

import json
import tarfile

import pytest

from tinylinux.packaging.manifest import (
    artifact_info,
    generate_manifest,
    write_manifest,
)
from tinylinux.packaging.release import (
    PackagingError,
    pack_release,
    release_archive_name,
)
from tinylinux.sources.fetch import compute_file_sha256
from tinylinux.types import Architecture, ArtifactKind


@pytest.fixture
def artifacts_dir(tmp_path):
    """Artifact directory with a kernel image and initramfs."""
    d = tmp_path / "artifacts" / "x86_64"
    d.mkdir(parents=True)
    (d / "bzImage").write_bytes(b"kernel")
    (d / "initramfs.cpio.gz").write_bytes(b"initramfs")
    (d / "manifest.json").write_text("{}")
    return d


class TestPackRelease:
    """Tests for pack_release function."""

    def test_archive_name(self) -> None:
        """Archive should be named <name>_<version>_<arch>.tar.gz."""
        assert release_archive_name("tinylinux", "0.1.0", Architecture.AARCH64) == (
            "tinylinux_0.1.0_aarch64.tar.gz"
        )

    def test_exactly_two_members(self, tmp_path, artifacts_dir) -> None:
        """Only the kernel image and initramfs should be packed."""
        dest = pack_release("x86_64", "0.1.0", artifacts_dir, tmp_path / "repo")

        assert dest == tmp_path / "repo" / "tinylinux_0.1.0_x86_64.tar.gz"
        with tarfile.open(dest, "r:gz") as tar:
            members = tar.getmembers()
            assert [m.name for m in members] == ["bzImage", "initramfs.cpio.gz"]
            assert all(m.uid == 0 and m.gid == 0 for m in members)
            assert tar.extractfile("bzImage").read() == b"kernel"

    def test_deterministic_with_seed(self, tmp_path, artifacts_dir) -> None:
        """The same inputs and seed should give identical archives."""
        first = pack_release(
            "x86_64", "0.1.0", artifacts_dir, tmp_path / "a", mtime=1700000000
        )
        second = pack_release(
            "x86_64", "0.1.0", artifacts_dir, tmp_path / "b", mtime=1700000000
        )
        assert first.read_bytes() == second.read_bytes()
        with tarfile.open(first, "r:gz") as tar:
            assert all(m.mtime == 1700000000 for m in tar.getmembers())

    def test_missing_inputs(self, tmp_path) -> None:
        """Missing images should raise missing_inputs."""
        (tmp_path / "art").mkdir()
        (tmp_path / "art" / "Image").write_bytes(b"kernel")
        with pytest.raises(PackagingError) as exc_info:
            pack_release("aarch64", "0.1.0", tmp_path / "art", tmp_path)
        assert exc_info.value.code == "missing_inputs"
        assert "initramfs.cpio.gz" in str(exc_info.value)


class TestManifest:
    """Tests for manifest generation."""

    def test_artifact_info(self, artifacts_dir) -> None:
        """artifact_info should record size and checksum."""
        info = artifact_info(
            Architecture.X86_64, ArtifactKind.KERNEL_IMAGE, artifacts_dir / "bzImage"
        )
        assert info.size_bytes == 6
        assert info.sha256 == compute_file_sha256(artifacts_dir / "bzImage")
        assert info.filename == "bzImage"

    def test_generate_and_write(self, tmp_path, artifacts_dir) -> None:
        """Manifest should list artifacts and a summary."""
        artifacts = [
            artifact_info(
                Architecture.X86_64, ArtifactKind.KERNEL_IMAGE, artifacts_dir / "bzImage"
            ),
            artifact_info(
                Architecture.X86_64,
                ArtifactKind.INITRAMFS,
                artifacts_dir / "initramfs.cpio.gz",
            ),
        ]
        manifest = generate_manifest(
            Architecture.X86_64, artifacts, "0.1.0", source_date_epoch=0
        )
        path = write_manifest(manifest, tmp_path / "out" / "manifest.json")

        data = json.loads(path.read_text())
        assert data["arch"] == "x86_64"
        assert data["generated_at"] == "1970-01-01T00:00:00+00:00"
        assert [a["kind"] for a in data["artifacts"]] == ["kernel-image", "initramfs"]
        assert data["summary"] == {"total_artifacts": 2, "total_size_bytes": 15}

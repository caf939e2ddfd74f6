"""Tests for source fetch module.

These tests use mocked HTTP responses to test downloading, checksum
verification, and extraction.
"""

import hashlib
import io
import tarfile
from pathlib import Path

import httpx
import pytest
import respx

from tinylinux.sources.fetch import (
    DownloadError,
    DownloadResult,
    ExtractionError,
    VerificationError,
    archive_mode,
    compute_file_sha256,
    download_file,
    extract_archive,
)

URL = "https://example.com/pkg-1.0.tar.gz"


def make_tarball(path: Path, members: dict[str, bytes], mode: str = "w:gz") -> Path:
    """Write a tarball with the given file members."""
    with tarfile.open(path, mode) as tar:
        for name, content in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return path


class TestComputeFileSha256:
    """Tests for compute_file_sha256 function."""

    def test_matches_hashlib(self, tmp_path) -> None:
        """Should match a direct hashlib digest."""
        path = tmp_path / "f"
        path.write_bytes(b"tinylinux" * 1000)
        assert compute_file_sha256(path, chunk_size=7) == hashlib.sha256(
            b"tinylinux" * 1000
        ).hexdigest()


class TestDownloadFile:
    """Tests for download_file function."""

    @respx.mock
    def test_download_success(self, tmp_path) -> None:
        """Should download file and compute checksum."""
        content = b"archive bytes"
        respx.get(URL).mock(return_value=httpx.Response(200, content=content))

        dest = tmp_path / "downloads" / "pkg-1.0.tar.gz"
        with httpx.Client() as client:
            result = download_file(client, URL, dest)

        assert isinstance(result, DownloadResult)
        assert result.path == dest
        assert dest.read_bytes() == content
        assert result.checksum == hashlib.sha256(content).hexdigest()
        assert result.size_bytes == len(content)

    @respx.mock
    def test_download_verifies_checksum(self, tmp_path) -> None:
        """Should accept a matching pinned checksum in any case."""
        content = b"archive bytes"
        respx.get(URL).mock(return_value=httpx.Response(200, content=content))
        expected = hashlib.sha256(content).hexdigest().upper()

        with httpx.Client() as client:
            result = download_file(client, URL, tmp_path / "f", expected_checksum=expected)
        assert result.checksum == expected.lower()

    @respx.mock
    def test_checksum_mismatch(self, tmp_path) -> None:
        """Should raise VerificationError and leave nothing behind."""
        respx.get(URL).mock(return_value=httpx.Response(200, content=b"tampered"))
        dest = tmp_path / "f"

        with httpx.Client() as client, pytest.raises(VerificationError):
            download_file(client, URL, dest, expected_checksum="0" * 64)

        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []

    @respx.mock
    def test_http_error(self, tmp_path) -> None:
        """HTTP errors should raise DownloadError with http_error code."""
        respx.get(URL).mock(return_value=httpx.Response(404))

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, URL, tmp_path / "f")
        assert exc_info.value.code == "http_error"

    @respx.mock
    def test_network_error(self, tmp_path) -> None:
        """Connection failures should raise DownloadError with network_error."""
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, URL, tmp_path / "f")
        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_timeout(self, tmp_path) -> None:
        """Timeouts should raise DownloadError with timeout code."""
        respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, URL, tmp_path / "f")
        assert exc_info.value.code == "timeout"


class TestArchiveMode:
    """Tests for archive_mode function."""

    @pytest.mark.parametrize(
        ("name", "mode"),
        [
            ("linux-6.6.58.tar.xz", "r:xz"),
            ("dropbear-2024.86.tar.bz2", "r:bz2"),
            ("socat-1.8.0.0.tar.gz", "r:gz"),
            ("aarch64-linux-musl-cross.tgz", "r:gz"),
            ("plain.tar", "r:"),
        ],
    )
    def test_known_formats(self, name: str, mode: str) -> None:
        """Should map archive suffixes to tarfile modes."""
        assert archive_mode(Path(name)) == mode

    def test_unknown_format(self) -> None:
        """Unknown suffixes should raise ExtractionError."""
        with pytest.raises(ExtractionError) as exc_info:
            archive_mode(Path("pkg.zip"))
        assert exc_info.value.code == "unsupported_format"


class TestExtractArchive:
    """Tests for extract_archive function."""

    def test_single_top_level_directory(self, tmp_path) -> None:
        """Should return the single top-level directory as source root."""
        archive = make_tarball(
            tmp_path / "pkg-1.0.tar.gz",
            {"pkg-1.0/Makefile": b"all:\n", "pkg-1.0/src/main.c": b"int main;\n"},
        )
        root = extract_archive(archive, tmp_path / "out")

        assert root == tmp_path / "out" / "pkg-1.0"
        assert (root / "Makefile").read_bytes() == b"all:\n"
        assert archive.exists()

    def test_multiple_top_level_entries(self, tmp_path) -> None:
        """Should return dest_dir when there are several top-level entries."""
        archive = make_tarball(
            tmp_path / "flat.tar.bz2", {"a": b"1", "b": b"2"}, mode="w:bz2"
        )
        root = extract_archive(archive, tmp_path / "out")
        assert root == tmp_path / "out"

    def test_clears_previous_extraction(self, tmp_path) -> None:
        """A previous partial extraction should be removed first."""
        dest = tmp_path / "out"
        (dest / "stale").mkdir(parents=True)
        archive = make_tarball(tmp_path / "pkg.tar.xz", {"pkg/x": b"x"}, mode="w:xz")

        extract_archive(archive, dest)
        assert not (dest / "stale").exists()

    def test_path_traversal_rejected(self, tmp_path) -> None:
        """Members escaping the destination should be refused."""
        archive = make_tarball(tmp_path / "evil.tar.gz", {"../evil": b"x"})
        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(archive, tmp_path / "out")
        assert exc_info.value.code == "path_traversal"
        assert not (tmp_path / "evil").exists()

    def test_corrupt_archive(self, tmp_path) -> None:
        """Corrupt archives should raise ExtractionError."""
        archive = tmp_path / "bad.tar.gz"
        archive.write_bytes(b"not a tarball")
        with pytest.raises(ExtractionError):
            extract_archive(archive, tmp_path / "out")

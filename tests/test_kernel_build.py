"""Tests for the kernel build pipeline.

External tools are replaced by a fake run_command that creates the files
make would produce.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from tinylinux.config import Settings
from tinylinux.kernel.build import (
    KernelBuild,
    KernelBuildError,
    build_metadata,
    compose_kernel_make_command,
    kbuild_timestamp,
    kernel_jobs,
    persist_defconfig,
)
from tinylinux.plan import get_build_plan
from tinylinux.runner import CommandError
from tinylinux.toolchain import resolve
from tinylinux.types import Architecture, ArtifactKind, KernelBuildState


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temp repository with persisted configs."""
    kconfig = tmp_path / "config" / "kernel"
    kconfig.mkdir(parents=True)
    (kconfig / "x86_64.defconfig").write_text("CONFIG_BLK_DEV_INITRD=y\n")
    (kconfig / "aarch64.defconfig").write_text("CONFIG_BLK_DEV_INITRD=y\n")
    return Settings(
        repo_root=tmp_path,
        cache_dir=tmp_path / "cache",
        source_date_epoch=1700000000,
        jobs=4,
        awk="gawk",
    )


@pytest.fixture
def toolchain(tmp_path):
    """Cross toolchain for aarch64."""
    return resolve(Architecture.AARCH64, tmp_path / "tc", "x86_64")


def fake_make(image_rel: str):
    """Return a run_command replacement simulating kernel make targets."""

    def run(cmd, cwd, log_path=None, env=None):
        build_dir = next(a[2:] for a in cmd if a.startswith("O="))
        build_dir = Path(build_dir)
        if "savedefconfig" in cmd:
            (build_dir / "defconfig").write_text("CONFIG_MINIMIZED=y\n")
        elif "olddefconfig" not in cmd:
            image = build_dir / image_rel
            image.parent.mkdir(parents=True, exist_ok=True)
            image.write_bytes(b"kernel")

    return run


class TestComposeKernelMakeCommand:
    """Tests for compose_kernel_make_command function."""

    def test_cross_command(self, tmp_path, settings, toolchain) -> None:
        """Should pass O, ARCH, CROSS_COMPILE and AWK."""
        cmd = compose_kernel_make_command(
            tmp_path / "linux", tmp_path / "build", toolchain, settings
        )
        assert cmd == [
            "make",
            "-C",
            str(tmp_path / "linux"),
            f"O={tmp_path / 'build'}",
            "ARCH=arm64",
            "CROSS_COMPILE=aarch64-linux-musl-",
            "AWK=gawk",
        ]

    def test_native_command(self, tmp_path, settings) -> None:
        """Native toolchains should pass an empty CROSS_COMPILE."""
        tc = resolve(Architecture.X86_64, tmp_path, "x86_64")
        cmd = compose_kernel_make_command(tmp_path, tmp_path / "b", tc, settings)
        assert "ARCH=x86" in cmd
        assert "CROSS_COMPILE=" in cmd

    def test_jobs_metadata_and_targets(self, tmp_path, settings, toolchain) -> None:
        """Jobs, metadata and targets should be appended in order."""
        cmd = compose_kernel_make_command(
            tmp_path,
            tmp_path / "b",
            toolchain,
            settings,
            targets=["savedefconfig"],
            jobs=8,
            metadata={"KBUILD_BUILD_USER": "u"},
        )
        assert cmd[-3:] == ["-j8", "KBUILD_BUILD_USER=u", "savedefconfig"]


class TestMetadata:
    """Tests for reproducible build metadata."""

    def test_timestamp_from_seed(self) -> None:
        """A seed should produce a fixed UTC timestamp."""
        assert kbuild_timestamp(0) == "Thu Jan 01 00:00:00 UTC 1970"

    def test_timestamp_without_seed(self) -> None:
        """Without a seed the current time should be used."""
        with patch("tinylinux.kernel.build.time.time", return_value=86400):
            assert kbuild_timestamp(None) == "Fri Jan 02 00:00:00 UTC 1970"

    def test_build_metadata(self, settings) -> None:
        """Metadata should carry the plan's fixed strings."""
        meta = build_metadata(get_build_plan(kbuild_user="bob"), settings)
        assert meta["KBUILD_BUILD_USER"] == "bob"
        assert meta["KBUILD_BUILD_HOST"] == "tinylinux"
        assert meta["KBUILD_BUILD_VERSION"] == "1"
        assert meta["KBUILD_BUILD_TIMESTAMP"] == kbuild_timestamp(1700000000)

    def test_kernel_jobs(self, settings) -> None:
        """Configured jobs should win over the CPU count."""
        assert kernel_jobs(settings) == 4


class TestPersistDefconfig:
    """Tests for persist_defconfig function."""

    def test_copies_defconfig(self, tmp_path) -> None:
        """Should copy defconfig to the persisted location."""
        (tmp_path / "defconfig").write_text("CONFIG_X=y\n")
        dest = persist_defconfig(tmp_path, tmp_path / "out" / "x.defconfig")
        assert dest.read_text() == "CONFIG_X=y\n"

    def test_missing_defconfig(self, tmp_path) -> None:
        """Should raise when savedefconfig produced nothing."""
        with pytest.raises(KernelBuildError) as exc_info:
            persist_defconfig(tmp_path, tmp_path / "x.defconfig")
        assert exc_info.value.code == "missing_defconfig"


class TestKernelBuild:
    """Tests for KernelBuild class."""

    def test_toolchain_mismatch(self, tmp_path, settings, toolchain) -> None:
        """A toolchain for another architecture should be rejected."""
        with pytest.raises(KernelBuildError) as exc_info:
            KernelBuild("x86_64", tmp_path, toolchain, settings, get_build_plan())
        assert exc_info.value.code == "toolchain_mismatch"

    def test_build_before_configure(self, tmp_path, settings, toolchain) -> None:
        """Steps out of order should raise invalid_state."""
        kb = KernelBuild("aarch64", tmp_path, toolchain, settings, get_build_plan())
        with pytest.raises(KernelBuildError) as exc_info:
            kb.build()
        assert exc_info.value.code == "invalid_state"

    def test_missing_persisted_config(self, tmp_path, toolchain) -> None:
        """Configuring without a persisted config should fail."""
        settings = Settings(repo_root=tmp_path / "empty")
        kb = KernelBuild("aarch64", tmp_path, toolchain, settings, get_build_plan())
        with pytest.raises(KernelBuildError) as exc_info:
            kb.prepare_config()
        assert exc_info.value.code == "missing_config"

    def test_prepare_config_resets_build_dir(self, tmp_path, settings, toolchain) -> None:
        """The build directory should be recreated from the persisted config."""
        kb = KernelBuild("aarch64", tmp_path, toolchain, settings, get_build_plan())
        kb.build_dir.mkdir(parents=True)
        (kb.build_dir / "stale.o").write_text("x")

        with patch("tinylinux.kernel.build.run_command") as mock_run:
            config = kb.prepare_config()

        assert not (kb.build_dir / "stale.o").exists()
        assert config.read_text() == "CONFIG_BLK_DEV_INITRD=y\n"
        assert mock_run.call_args.args[0][-1] == "olddefconfig"
        assert kb.state is KernelBuildState.CONFIGURED

    def test_full_run(self, tmp_path, settings, toolchain) -> None:
        """run() should build, persist the defconfig and extract the image."""
        kb = KernelBuild("aarch64", tmp_path, toolchain, settings, get_build_plan())

        with patch(
            "tinylinux.kernel.build.run_command",
            side_effect=fake_make("arch/arm64/boot/Image"),
        ) as mock_run:
            info = kb.run()

        assert kb.state is KernelBuildState.EXTRACTED
        assert info.kind is ArtifactKind.KERNEL_IMAGE
        assert info.path == settings.artifacts_dir / "aarch64" / "Image"
        assert info.path.read_bytes() == b"kernel"
        assert (settings.kconfig_dir / "aarch64.defconfig").read_text() == (
            "CONFIG_MINIMIZED=y\n"
        )

        build_cmd = mock_run.call_args_list[1].args[0]
        assert "-j4" in build_cmd
        assert "KBUILD_BUILD_TIMESTAMP=" + kbuild_timestamp(1700000000) in build_cmd
        assert mock_run.call_args_list[2].args[0][-1] == "savedefconfig"

    def test_missing_image(self, tmp_path, settings, toolchain) -> None:
        """A build that produces no image should fail."""
        kb = KernelBuild("aarch64", tmp_path, toolchain, settings, get_build_plan())
        with patch("tinylinux.kernel.build.run_command"):
            kb.prepare_config()
            with pytest.raises(KernelBuildError) as exc_info:
                kb.build()
        assert exc_info.value.code == "missing_image"

    def test_make_failure_propagates(self, tmp_path, settings, toolchain) -> None:
        """A failing make should propagate CommandError."""
        kb = KernelBuild("aarch64", tmp_path, toolchain, settings, get_build_plan())
        with patch(
            "tinylinux.kernel.build.run_command",
            side_effect=CommandError("make failed", exit_code=2),
        ), pytest.raises(CommandError):
            kb.prepare_config()
        assert kb.state is KernelBuildState.SOURCE_READY

"""Configuration settings for tinylinux.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default cache directory."""
    return Path.home() / ".cache" / "tinylinux"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the TINYLINUX_ prefix.
    SOURCE_DATE_EPOCH and AWK are read without the prefix since the kernel
    build conventionally honours them under those names.
    """

    model_config = SettingsConfigDict(
        env_prefix="TINYLINUX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    repo_root: Path = Field(
        default_factory=Path.cwd,
        description="Repository root holding config/ and skeleton/",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Download cache for sources and toolchains",
    )
    build_dir: Path = Field(
        default=Path("build"),
        description="Root of per-architecture build directories",
    )
    artifacts_dir: Path = Field(
        default=Path("artifacts"),
        description="Root of per-architecture artifact directories",
    )
    db_url: str | None = Field(
        default=None,
        description="Database URL for source completion records",
    )
    ca_bundle: Path = Field(
        default=Path("/etc/ssl/certs/ca-certificates.crt"),
        description="Host CA bundle installed into the root filesystem",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - never download sources",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    host_arch: str | None = Field(
        default=None,
        description="Override the detected host architecture",
    )
    jobs: int | None = Field(
        default=None,
        ge=1,
        description="Kernel build parallelism (defaults to host CPU count)",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for source downloads in seconds",
    )

    # Kernel build inputs
    source_date_epoch: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("SOURCE_DATE_EPOCH", "source_date_epoch"),
        description="Reproducibility timestamp seed (wall clock when unset)",
    )
    awk: str = Field(
        default="awk",
        validation_alias=AliasChoices("AWK", "awk"),
        description="awk implementation used by the kernel build",
    )
    kconfig_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Kernel config entries applied when seeding a working config",
    )
    kconfig_overrides_file: Path | None = Field(
        default=None,
        description="YAML mapping of additional kernel config overrides",
    )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        # Relative build locations live under the repository root
        if not self.build_dir.is_absolute():
            self.build_dir = self.repo_root / self.build_dir
        if not self.artifacts_dir.is_absolute():
            self.artifacts_dir = self.repo_root / self.artifacts_dir
        if self.db_url is None:
            self.db_url = f"sqlite:///{self.cache_dir / 'sources.sqlite'}"
        return self

    @property
    def database_url(self) -> str:
        """Completion-record database URL, defaulting to SQLite in the cache."""
        return self.db_url or f"sqlite:///{self.cache_dir / 'sources.sqlite'}"

    @property
    def kconfig_dir(self) -> Path:
        """Directory of persisted per-architecture kernel configs."""
        return self.repo_root / "config" / "kernel"

    @property
    def toybox_config(self) -> Path:
        """Fixed core-utilities feature configuration."""
        return self.repo_root / "config" / "toybox.config"

    @property
    def skeleton_dir(self) -> Path:
        """Checked-in root filesystem skeleton."""
        return self.repo_root / "skeleton"


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]

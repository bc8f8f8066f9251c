"""Configuration settings for diskrun.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_state_dir() -> Path:
    """Return the default state directory."""
    return Path.home() / ".local" / "share" / "diskrun"


def _default_kernel_dir() -> Path:
    """Return the default directory holding firecracker kernels."""
    return _default_state_dir() / "kernels"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_state_dir() / "diskrun.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the DISKRUN_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISKRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    state_dir: Path = Field(
        default_factory=_default_state_dir,
        description="Root directory for durable state",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database URL for the address queue and run history",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent of per-build scratch directories (system default if not set)",
    )
    kernel_dir: Path = Field(
        default_factory=_default_kernel_dir,
        description="Directory containing kernels for firecracker",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    image_engine: str | None = Field(
        default=None,
        description="Image engine reference in 'module:attribute' form",
    )

    # Networking
    bridge_name: str = Field(
        default="diskrun0",
        max_length=15,
        description="Host bridge device used by firecracker guests",
    )
    bridge_ip: str = Field(
        default="10.26.10.1",
        description="Address of the host bridge, used as the guest gateway",
    )
    network_cidr: str = Field(
        default="10.26.10.0/24",
        description="Network the guest address pool is computed from",
    )
    hyperv_switch: str = Field(
        default="Default Switch",
        description="Hyper-V virtual switch guests attach to",
    )

    # Hypervisor tools
    qemu_binary: str = Field(default="qemu-system-x86_64")
    firecracker_binary: str = Field(default="firecracker")
    vboxmanage_binary: str = Field(default="VBoxManage")
    vmrun_binary: str = Field(default="vmrun")
    powershell_binary: str = Field(default="powershell.exe")


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

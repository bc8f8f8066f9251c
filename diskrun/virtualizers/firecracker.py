"""Firecracker backend.

Firecracker guests are linux-only, boot a kernel that lives outside the
disk (looked up by the build identifier embedded in the image) and
attach a tap device per declared network to the host bridge. Network
addresses are assigned from the address allocator at build time.
"""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from diskrun.disk.formats import RAW
from diskrun.network.bridge import ensure_bridge
from diskrun.types import BackendId, LaunchOptions
from diskrun.virtualizers.base import (
    BackendConfig,
    BackendDescriptor,
    Virtualizer,
    run_command,
)

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.packages.schema import VMConfig

logger = logging.getLogger(__name__)

BOOT_ARGS = "console=ttyS0 reboot=k panic=1 pci=off"
CONFIG_FILENAME = "firecracker.json"


class FirecrackerConfig(BackendConfig):
    """Firecracker configuration."""

    bridge_name: str = "diskrun0"


def guest_mac(index: int) -> str:
    return f"AA:FC:00:00:{index // 256:02X}:{index % 256:02X}"


def kernel_path(settings: Settings, kernel: str | None) -> Path:
    return settings.kernel_dir / f"vmlinux-{kernel or 'latest'}"


class FirecrackerVirtualizer(Virtualizer):
    """Runs a raw disk with firecracker, without the API socket."""

    virtualizer_id = BackendId.FIRECRACKER
    config_type = FirecrackerConfig

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.taps: list[str] = []
        self.config_path: Path | None = None

    def machine_config(self, disk: Path, config: VMConfig) -> dict[str, Any]:
        """Compose the firecracker --config-file document."""
        return {
            "boot-source": {
                "kernel_image_path": str(kernel_path(self.settings, config.vm.kernel)),
                "boot_args": BOOT_ARGS,
            },
            "drives": [
                {
                    "drive_id": "rootfs",
                    "path_on_host": str(disk),
                    "is_root_device": True,
                    "is_read_only": False,
                }
            ],
            "machine-config": {
                "vcpu_count": self.cpus(config),
                "mem_size_mib": self.memory_mib(config),
            },
            "network-interfaces": [
                {
                    "iface_id": f"eth{index}",
                    "host_dev_name": tap,
                    "guest_mac": guest_mac(index),
                }
                for index, tap in enumerate(self.taps)
            ],
        }

    def prepare(self, disk: Path, config: VMConfig, name: str) -> None:
        kernel = kernel_path(self.settings, config.vm.kernel)
        if not kernel.is_file():
            raise FileNotFoundError(f"Kernel {config.vm.kernel} not found at {kernel}")

        prefix = f"dr{uuid.uuid4().hex[:8]}"
        for index in range(len(config.networks)):
            tap = f"{prefix}t{index}"
            self.taps.append(tap)
            run_command(["ip", "tuntap", "add", "dev", tap, "mode", "tap"])
            run_command(["ip", "link", "set", "dev", tap, "master", self.config.bridge_name])
            run_command(["ip", "link", "set", "dev", tap, "up"])
            logger.debug("Attached %s to bridge %s", tap, self.config.bridge_name)

        self.config_path = disk.parent / CONFIG_FILENAME
        self.config_path.write_text(
            json.dumps(self.machine_config(disk, config), indent=2), encoding="utf-8"
        )

    def launch_command(self, disk: Path, config: VMConfig, name: str) -> list[str]:
        return [
            self.settings.firecracker_binary,
            "--no-api",
            "--config-file",
            str(self.config_path or disk.parent / CONFIG_FILENAME),
        ]

    def cleanup_commands(self) -> list[list[str]]:
        commands = [["ip", "link", "delete", tap] for tap in self.taps]
        self.taps = []
        return commands


def is_available(settings: Settings) -> bool:
    return shutil.which(settings.firecracker_binary) is not None


def make_config(options: LaunchOptions, settings: Settings) -> FirecrackerConfig:
    return FirecrackerConfig(bridge_name=settings.bridge_name)


DESCRIPTOR = BackendDescriptor(
    backend_id=BackendId.FIRECRACKER,
    display_name="firecracker",
    disk_format=RAW,
    virtualizer_type=FirecrackerVirtualizer,
    availability=is_available,
    unavailable_message="firecracker is not installed on your system",
    make_config=make_config,
    platforms=frozenset({"linux"}),
    supports_gui=False,
    assigns_addresses=True,
    reports_kernel=True,
    prepare_host=ensure_bridge,
)

__all__ = [
    "DESCRIPTOR",
    "FirecrackerConfig",
    "FirecrackerVirtualizer",
    "guest_mac",
    "is_available",
    "kernel_path",
]

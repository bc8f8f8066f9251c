"""QEMU backend."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from diskrun.disk.formats import RAW
from diskrun.types import BackendId, LaunchOptions
from diskrun.virtualizers.base import BackendConfig, BackendDescriptor, Virtualizer

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.packages.schema import NetworkInterface, VMConfig

KVM_DEVICE = Path("/dev/kvm")


class QEMUConfig(BackendConfig):
    """QEMU configuration."""

    headless: bool = True


def forward_rules(network: NetworkInterface) -> list[str]:
    """Compose user-mode networking host forwards for an interface.

    Ports are written as 'port' (same on host and guest) or
    'host:guest'.
    """
    rules: list[str] = []
    for proto, ports in (
        ("tcp", network.http + network.https + network.tcp),
        ("udp", network.udp),
    ):
        for port in ports:
            host, _, guest = str(port).partition(":")
            rules.append(f"hostfwd={proto}::{host}-:{guest or host}")
    return rules


class QEMUVirtualizer(Virtualizer):
    """Runs a raw disk with qemu-system."""

    virtualizer_id = BackendId.QEMU
    config_type = QEMUConfig

    def launch_command(self, disk: Path, config: VMConfig, name: str) -> list[str]:
        cmd = [
            self.settings.qemu_binary,
            "-name",
            name,
            "-m",
            str(self.memory_mib(config)),
            "-smp",
            str(self.cpus(config)),
            "-drive",
            f"file={disk},format=raw,if=virtio",
        ]

        if KVM_DEVICE.exists() and os.access(KVM_DEVICE, os.R_OK | os.W_OK):
            cmd.extend(["-enable-kvm", "-cpu", "host"])

        if self.config.headless:
            cmd.append("-nographic")
        else:
            cmd.extend(["-display", "default", "-serial", "stdio"])

        if not config.networks:
            cmd.extend(["-nic", "none"])
        for index, network in enumerate(config.networks):
            netdev = ",".join([f"user,id=net{index}", *forward_rules(network)])
            cmd.extend(
                ["-netdev", netdev, "-device", f"virtio-net-pci,netdev=net{index}"]
            )
        return cmd


def is_available(settings: Settings) -> bool:
    return shutil.which(settings.qemu_binary) is not None


def make_config(options: LaunchOptions, settings: Settings) -> QEMUConfig:
    return QEMUConfig(headless=not options.gui)


DESCRIPTOR = BackendDescriptor(
    backend_id=BackendId.QEMU,
    display_name="qemu",
    disk_format=RAW,
    virtualizer_type=QEMUVirtualizer,
    availability=is_available,
    unavailable_message="qemu not installed on system",
    make_config=make_config,
)

__all__ = ["DESCRIPTOR", "QEMUConfig", "QEMUVirtualizer", "forward_rules", "is_available"]

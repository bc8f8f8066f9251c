"""VirtualBox backend."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from diskrun.disk.formats import VMDK_SPARSE
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

STORAGE_CONTROLLER = "SATA"


class VirtualBoxConfig(BackendConfig):
    """VirtualBox configuration."""

    headless: bool = True
    network_type: str = "nat"


class VirtualBoxVirtualizer(Virtualizer):
    """Registers the disk as a VirtualBox VM and runs it in a blocking frontend."""

    virtualizer_id = BackendId.VIRTUALBOX
    config_type = VirtualBoxConfig

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.disk: Path | None = None

    def vboxmanage(self, *args: str) -> list[str]:
        return [self.settings.vboxmanage_binary, *args]

    def setup_commands(self, disk: Path, config: VMConfig, name: str) -> list[list[str]]:
        """Compose the VBoxManage commands registering the VM."""
        nics: list[str] = []
        for index in range(len(config.networks)):
            nics.extend([f"--nic{index + 1}", self.config.network_type])
        if not nics:
            nics = ["--nic1", "none"]
        return [
            self.vboxmanage(
                "createvm", "--name", name, "--ostype", "Linux_64",
                "--basefolder", str(disk.parent), "--register",
            ),
            self.vboxmanage(
                "modifyvm", name,
                "--memory", str(self.memory_mib(config)),
                "--cpus", str(self.cpus(config)),
                *nics,
            ),
            self.vboxmanage(
                "storagectl", name, "--name", STORAGE_CONTROLLER,
                "--add", "sata", "--portcount", "1",
            ),
            self.vboxmanage(
                "storageattach", name, "--storagectl", STORAGE_CONTROLLER,
                "--port", "0", "--device", "0", "--type", "hdd", "--medium", str(disk),
            ),
        ]

    def prepare(self, disk: Path, config: VMConfig, name: str) -> None:
        self.disk = disk
        for cmd in self.setup_commands(disk, config, name):
            run_command(cmd)

    def launch_command(self, disk: Path, config: VMConfig, name: str) -> list[str]:
        tools = Path(self.settings.vboxmanage_binary).parent
        frontend = "VBoxHeadless" if self.config.headless else "VirtualBoxVM"
        binary = str(tools / frontend) if str(tools) != "." else frontend
        return [binary, "--startvm", name]

    def cleanup_commands(self) -> list[list[str]]:
        if self.name is None:
            return []
        # Unregister without --delete so the disk survives for saving.
        commands = [self.vboxmanage("unregistervm", self.name)]
        if self.disk is not None:
            commands.append(self.vboxmanage("closemedium", "disk", str(self.disk)))
        return commands


def is_available(settings: Settings) -> bool:
    return shutil.which(settings.vboxmanage_binary) is not None


def make_config(options: LaunchOptions, settings: Settings) -> VirtualBoxConfig:
    return VirtualBoxConfig(headless=not options.gui, network_type="nat")


DESCRIPTOR = BackendDescriptor(
    backend_id=BackendId.VIRTUALBOX,
    display_name="virtualbox",
    disk_format=VMDK_SPARSE,
    virtualizer_type=VirtualBoxVirtualizer,
    availability=is_available,
    unavailable_message="virtualbox not found installed on system",
    make_config=make_config,
)

__all__ = ["DESCRIPTOR", "VirtualBoxConfig", "VirtualBoxVirtualizer", "is_available"]

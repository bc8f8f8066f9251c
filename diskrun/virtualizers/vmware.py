"""VMware backend.

VMware runs a generated ``.vmx`` beside the disk, and requires the disk
file to carry a ``.vmdk`` extension.
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import time
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

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0


class VMwareConfig(BackendConfig):
    """VMware configuration."""

    headless: bool = True
    network_type: str = "nat"


def host_type() -> str:
    """Return the vmrun host type for this platform."""
    return "fusion" if platform.system() == "Darwin" else "ws"


class VMwareVirtualizer(Virtualizer):
    """Runs the disk through vmrun and waits for the VM to power off."""

    virtualizer_id = BackendId.VMWARE
    config_type = VMwareConfig

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.vmx_path: Path | None = None

    def render_vmx(self, disk: Path, config: VMConfig, name: str) -> str:
        entries = {
            ".encoding": "UTF-8",
            "config.version": "8",
            "virtualHW.version": "14",
            "displayName": name,
            "guestOS": "other4xlinux-64",
            "memsize": str(self.memory_mib(config)),
            "numvcpus": str(self.cpus(config)),
            "scsi0.present": "TRUE",
            "scsi0.virtualDev": "pvscsi",
            "scsi0:0.present": "TRUE",
            "scsi0:0.fileName": disk.name,
        }
        for index in range(len(config.networks)):
            entries[f"ethernet{index}.present"] = "TRUE"
            entries[f"ethernet{index}.connectionType"] = self.config.network_type
            entries[f"ethernet{index}.virtualDev"] = "vmxnet3"
            entries[f"ethernet{index}.addressType"] = "generated"
        return "".join(f'{key} = "{value}"\n' for key, value in entries.items())

    def vmrun(self, *args: str) -> list[str]:
        return [self.settings.vmrun_binary, "-T", host_type(), *args]

    def prepare(self, disk: Path, config: VMConfig, name: str) -> None:
        self.vmx_path = disk.with_suffix(".vmx")
        self.vmx_path.write_text(self.render_vmx(disk, config, name), encoding="utf-8")

    def launch_command(self, disk: Path, config: VMConfig, name: str) -> list[str]:
        mode = "nogui" if self.config.headless else "gui"
        return self.vmrun("start", str(self.vmx_path), mode)

    def is_running(self) -> bool:
        if self.vmx_path is None:
            return False
        try:
            result = run_command(self.vmrun("list"), timeout=30)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("vmrun list failed: %s", e)
            return False
        return str(self.vmx_path) in result.stdout

    def wait(self) -> int:
        # vmrun start returns once the VM is up; poll until it powers off.
        if self.process is None:
            raise RuntimeError("Virtualizer was not started")
        code = self.process.wait()
        if code == 0:
            while self.is_running():
                time.sleep(POLL_INTERVAL)
        self._mark_stopped()
        logger.info("VM '%s' exited with code %d", self.name, code)
        return code

    def stop(self) -> None:
        if self.vmx_path is not None and self.is_running():
            try:
                run_command(self.vmrun("stop", str(self.vmx_path), "hard"), timeout=60)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning("vmrun stop failed: %s", e)
        super().stop()


def is_available(settings: Settings) -> bool:
    return shutil.which(settings.vmrun_binary) is not None


def make_config(options: LaunchOptions, settings: Settings) -> VMwareConfig:
    return VMwareConfig(headless=not options.gui, network_type="nat")


DESCRIPTOR = BackendDescriptor(
    backend_id=BackendId.VMWARE,
    display_name="vmware",
    disk_format=VMDK_SPARSE,
    virtualizer_type=VMwareVirtualizer,
    availability=is_available,
    unavailable_message="vmware is not installed on your system",
    make_config=make_config,
    disk_filename="disk.vmdk",
)

__all__ = ["DESCRIPTOR", "VMwareConfig", "VMwareVirtualizer", "host_type", "is_available"]

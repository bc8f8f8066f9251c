"""Hyper-V backend.

Hyper-V is driven through PowerShell and is only available on Windows.
It requires a disk file with a ``.vhd`` extension.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from diskrun.disk.formats import VHD_DYNAMIC
from diskrun.types import BackendId, LaunchOptions
from diskrun.virtualizers.base import (
    BackendConfig,
    BackendDescriptor,
    Virtualizer,
    probe_command,
    run_command,
)

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.packages.schema import VMConfig


class HyperVConfig(BackendConfig):
    """Hyper-V configuration."""

    headless: bool = True
    switch_name: str = "Default Switch"


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string."""
    return "'" + value.replace("'", "''") + "'"


class HyperVVirtualizer(Virtualizer):
    """Registers the disk as a Hyper-V VM and runs it until it powers off."""

    virtualizer_id = BackendId.HYPERV
    config_type = HyperVConfig

    def powershell(self, script: str) -> list[str]:
        return [self.settings.powershell_binary, "-NoProfile", "-NonInteractive", "-Command", script]

    def prepare(self, disk: Path, config: VMConfig, name: str) -> None:
        vm = ps_quote(name)
        run_command(
            self.powershell(
                f"New-VM -Name {vm} -Generation 1 "
                f"-MemoryStartupBytes {self.memory_mib(config)}MB "
                f"-VHDPath {ps_quote(str(disk))} "
                f"-SwitchName {ps_quote(self.config.switch_name)} | Out-Null; "
                f"Set-VMProcessor -VMName {vm} -Count {self.cpus(config)}"
            )
        )

    def launch_command(self, disk: Path, config: VMConfig, name: str) -> list[str]:
        vm = ps_quote(name)
        script = f"Start-VM -Name {vm}; "
        if not self.config.headless:
            script += f"Start-Process vmconnect.exe -ArgumentList 'localhost',{vm}; "
        script += f"do {{ Start-Sleep -Seconds 1 }} while ((Get-VM -Name {vm}).State -ne 'Off')"
        return self.powershell(script)

    def cleanup_commands(self) -> list[list[str]]:
        if self.name is None:
            return []
        vm = ps_quote(self.name)
        return [
            self.powershell(
                f"Stop-VM -Name {vm} -TurnOff -Force -ErrorAction SilentlyContinue; "
                f"Remove-VM -Name {vm} -Force"
            )
        ]


def is_available(settings: Settings) -> bool:
    return probe_command(
        [settings.powershell_binary, "-NoProfile", "-NonInteractive", "-Command", "Get-Command Get-VM"]
    )


def make_config(options: LaunchOptions, settings: Settings) -> HyperVConfig:
    return HyperVConfig(headless=not options.gui, switch_name=settings.hyperv_switch)


DESCRIPTOR = BackendDescriptor(
    backend_id=BackendId.HYPERV,
    display_name="hyper-v",
    disk_format=VHD_DYNAMIC,
    virtualizer_type=HyperVVirtualizer,
    availability=is_available,
    unavailable_message="hyper-v is not enabled on your system",
    make_config=make_config,
    platforms=frozenset({"windows"}),
    disk_filename="disk.vhd",
)

__all__ = ["DESCRIPTOR", "HyperVConfig", "HyperVVirtualizer", "is_available", "ps_quote"]

"""Virtualizer base classes and backend descriptors.

A backend descriptor is the static description of one hypervisor
integration: how to probe for it, which disk format it boots, how its
configuration is marshaled and which virtualizer class runs a disk.

A virtualizer instance moves through UNINITIALIZED -> INITIALIZED ->
RUNNING -> STOPPED. ``initialize`` must be called exactly once, after the
disk is built and the package reader closed.
"""

from __future__ import annotations

import logging
import platform
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from diskrun.errors import ConfigurationError, StartFailureError
from diskrun.packages.schema import DEFAULT_CPUS, DEFAULT_RAM
from diskrun.types import BackendId, LaunchOptions, Step, VirtualizerState

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.disk.formats import DiskFormat
    from diskrun.packages.schema import VMConfig

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


class BackendConfig(BaseModel):
    """Backend-specific configuration handed to a virtualizer."""

    model_config = ConfigDict(extra="forbid")

    def marshal(self) -> bytes:
        """Serialize for ``Virtualizer.initialize``."""
        return self.model_dump_json().encode("utf-8")


def run_command(cmd: list[str], timeout: int | None = None) -> subprocess.CompletedProcess[str]:
    """Run a hypervisor tool command, raising on failure."""
    logger.debug("Executing: %s", shlex.join(cmd))
    return subprocess.run(
        cmd, capture_output=True, text=True, timeout=timeout, check=True
    )


def probe_command(cmd: list[str], timeout: int = 30) -> bool:
    """Return True if a probe command runs and exits with status 0."""
    try:
        run_command(cmd, timeout=timeout)
    except (OSError, subprocess.SubprocessError):
        return False
    return True


class Virtualizer:
    """A hypervisor instance running one disk.

    Subclasses set ``virtualizer_id`` and ``config_type`` and implement
    ``launch_command``. ``prepare`` and ``cleanup_commands`` are optional
    hooks run before launch and after the VM stops.
    """

    virtualizer_id: ClassVar[BackendId]
    config_type: ClassVar[type[BackendConfig]] = BackendConfig

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.state = VirtualizerState.UNINITIALIZED
        self.config: Any = None
        self.name: str | None = None
        self.process: subprocess.Popen[bytes] | None = None

    def initialize(self, data: bytes) -> None:
        """Load the marshaled backend configuration.

        Raises:
            ConfigurationError: If called twice or the data is rejected.
        """
        if self.state is not VirtualizerState.UNINITIALIZED:
            raise ConfigurationError(
                f"{self.virtualizer_id.value} virtualizer is already initialized",
                step=Step.INITIALIZE_VIRTUALIZER,
            )
        try:
            self.config = self.config_type.model_validate_json(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid {self.virtualizer_id.value} configuration: {e}",
                step=Step.INITIALIZE_VIRTUALIZER,
            ) from e
        self.state = VirtualizerState.INITIALIZED

    def prepare(self, disk: Path, config: VMConfig, name: str) -> None:
        """Hook run before launch, e.g. to register the VM."""

    def launch_command(self, disk: Path, config: VMConfig, name: str) -> list[str]:
        raise NotImplementedError

    def cleanup_commands(self) -> list[list[str]]:
        return []

    def start(self, disk: Path, config: VMConfig, name: str) -> None:
        """Launch the hypervisor on a built disk.

        Raises:
            StartFailureError: If not initialized or the launch fails.
        """
        if self.state is not VirtualizerState.INITIALIZED:
            raise StartFailureError(
                f"Cannot start {self.virtualizer_id.value} virtualizer in state "
                f"'{self.state.value}'",
                step=Step.START,
            )
        self.name = name
        try:
            self.prepare(disk, config, name)
            cmd = self.launch_command(disk, config, name)
            logger.info("Starting %s VM '%s'", self.virtualizer_id.value, name)
            logger.debug("Executing: %s", shlex.join(cmd))
            self.process = subprocess.Popen(cmd)
        except subprocess.CalledProcessError as e:
            self._cleanup()
            detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
            raise StartFailureError(
                f"'{shlex.join(e.cmd)}' failed: {detail}", step=Step.START
            ) from e
        except (OSError, subprocess.SubprocessError) as e:
            self._cleanup()
            raise StartFailureError(
                f"Failed to start {self.virtualizer_id.value}: {e}", step=Step.START
            ) from e
        self.state = VirtualizerState.RUNNING

    def wait(self) -> int:
        """Block until the VM exits and return the hypervisor's exit code.

        If waiting is interrupted the VM keeps running and its host
        resources are kept; call ``stop()`` to terminate and clean up.
        """
        if self.process is None:
            raise RuntimeError("Virtualizer was not started")
        code = self.process.wait()
        self._mark_stopped()
        logger.info("VM '%s' exited with code %d", self.name, code)
        return code

    def stop(self) -> None:
        """Terminate a running VM."""
        if self.process is not None and self.process.poll() is None:
            logger.info("Stopping VM '%s'", self.name)
            self.process.terminate()
            try:
                self.process.wait(timeout=30)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
        self._mark_stopped()

    def _mark_stopped(self) -> None:
        if self.state is VirtualizerState.RUNNING:
            self._cleanup()
        self.state = VirtualizerState.STOPPED

    def _cleanup(self) -> None:
        for cmd in self.cleanup_commands():
            try:
                run_command(cmd, timeout=60)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning("Cleanup command '%s' failed: %s", shlex.join(cmd), e)

    @staticmethod
    def memory_mib(config: VMConfig) -> int:
        return max(1, (config.vm.ram or DEFAULT_RAM) // MIB)

    @staticmethod
    def cpus(config: VMConfig) -> int:
        return config.vm.cpus or DEFAULT_CPUS


@dataclass(frozen=True)
class BackendDescriptor:
    """Static description of a hypervisor backend.

    Attributes:
        backend_id: Backend identifier.
        display_name: Human-readable name used in messages.
        disk_format: Format the disk is built in.
        virtualizer_type: Virtualizer class instantiated by ``alloc``.
        availability: Probe for the backend's tools or service.
        unavailable_message: Error message when the probe fails.
        make_config: Builds the backend configuration from user flags.
        platforms: Host OS families supported (``platform.system()``,
            lower-cased); empty means any.
        supports_gui: Whether a graphical display can be shown.
        assigns_addresses: Whether declared networks get allocator addresses.
        reports_kernel: Whether the embedded kernel build is written back
            into the configuration before launch.
        disk_filename: Fixed disk file name, for backends that check the
            extension; a random name is used if None.
        prepare_host: Host preparation run before any resource is allocated.
    """

    backend_id: BackendId
    display_name: str
    disk_format: DiskFormat
    virtualizer_type: type[Virtualizer]
    availability: Callable[[Settings], bool]
    unavailable_message: str
    make_config: Callable[[LaunchOptions, Settings], BackendConfig]
    platforms: frozenset[str] = frozenset()
    supports_gui: bool = True
    assigns_addresses: bool = False
    reports_kernel: bool = False
    disk_filename: str | None = None
    prepare_host: Callable[[Settings], object] | None = None

    @property
    def config_type(self) -> type[BackendConfig]:
        return self.virtualizer_type.config_type

    def is_available(self, settings: Settings) -> bool:
        return self.availability(settings)

    def supports_platform(self, system: str | None = None) -> bool:
        if not self.platforms:
            return True
        return (system or platform.system()).lower() in self.platforms

    def alloc(self, settings: Settings) -> Virtualizer:
        return self.virtualizer_type(settings)


__all__ = [
    "BackendConfig",
    "BackendDescriptor",
    "Virtualizer",
    "probe_command",
    "run_command",
]

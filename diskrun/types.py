"""Shared type definitions for diskrun.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class BackendId(str, Enum):
    """Identifier of a supported hypervisor backend."""

    VMWARE = "vmware"
    FIRECRACKER = "firecracker"
    HYPERV = "hyperv"
    VIRTUALBOX = "virtualbox"
    QEMU = "qemu"


class RunStatus(str, Enum):
    """Status of a build-and-run operation."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class VirtualizerState(str, Enum):
    """Lifecycle state of a virtualizer instance."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"


class Step(str, Enum):
    """Orchestration step, attached to errors for context."""

    CHECK_AVAILABILITY = "check-availability"
    PREPARE_HOST = "prepare-host"
    ACQUIRE_SCOPE = "acquire-scope"
    BUILD_DISK = "build-disk"
    CLOSE_READER = "close-reader"
    CONFIGURE_BACKEND = "configure-backend"
    INITIALIZE_VIRTUALIZER = "initialize-virtualizer"
    START = "start"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class KernelOptions:
    """Kernel boot options passed to the image builder.

    Attributes:
        shell: Boot into a shell instead of the package's programs.
        record: Record the guest session.
    """

    shell: bool = False
    record: bool = False


@dataclass(frozen=True)
class LaunchOptions:
    """User-facing flags forwarded through the orchestrator.

    Attributes:
        gui: Show a graphical display instead of running headless.
        shell: Boot into a shell.
        record: Path to record the session to, or None.
    """

    gui: bool = False
    shell: bool = False
    record: str | None = None

    def kernel_options(self) -> KernelOptions:
        """Return the kernel options implied by these flags."""
        return KernelOptions(shell=self.shell, record=bool(self.record))


__all__ = [
    "BackendId",
    "KernelOptions",
    "LaunchOptions",
    "RunStatus",
    "Step",
    "VirtualizerState",
]

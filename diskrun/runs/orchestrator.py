"""Build-and-launch orchestrator.

Every backend goes through the same sequence, parameterized by its
backend descriptor:

    check availability -> prepare host -> acquire scope -> build disk ->
    close disk and reader -> configure backend -> initialize -> start

A failure at any step skips the remaining steps and is raised with the
failing step attached. The resource scope is finalized on every exit
path; a requested disk copy is saved during finalization whenever the
build itself succeeded, even if a later step failed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from diskrun.disk.pipeline import build_disk
from diskrun.disk.scope import ResourceScope
from diskrun.errors import (
    BuildFailureError,
    ConfigurationError,
    ReaderCloseError,
    RelocationError,
    UnavailableBackendError,
)
from diskrun.network.allocator import AddressAllocator
from diskrun.types import BackendId, LaunchOptions, Step
from diskrun.virtualizers.registry import get_backend

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.disk.engine import ImageEngine
    from diskrun.disk.formats import DiskFormat
    from diskrun.packages.reader import PackageReader
    from diskrun.packages.schema import VMConfig
    from diskrun.virtualizers.base import BackendDescriptor, Virtualizer

logger = logging.getLogger(__name__)


@dataclass
class LaunchRequest:
    """A build-and-run request.

    Attributes:
        reader: Open package reader; closed by the orchestrator once the
            disk is built.
        config: Target configuration. The orchestrator works on a copy.
        backend: Backend to run the disk under.
        name: Display name of the VM.
        disk_output: Path to save a copy of the built disk to.
        options: User flags passed through to the backend and kernel.
    """

    reader: PackageReader
    config: VMConfig
    backend: BackendId | str
    name: str | None = None
    disk_output: Path | None = None
    options: LaunchOptions = field(default_factory=LaunchOptions)


@dataclass
class LaunchResult:
    """Outcome of a launch.

    Attributes:
        backend: Backend the disk ran under.
        vm_name: Display name of the VM.
        config: Configuration the VM was started with, with resolved
            network addresses and, where reported, the kernel build.
        disk_path: Temporary disk path (removed once the call returns).
        kernel: Kernel build embedded in the disk, if reported.
        virtualizer: The virtualizer instance, once allocated.
        exit_code: Hypervisor exit code.
        relocation_error: Set if saving the disk copy failed.
    """

    backend: BackendId
    vm_name: str
    config: VMConfig
    disk_path: Path | None = None
    kernel: str | None = None
    virtualizer: Virtualizer | None = None
    exit_code: int | None = None
    relocation_error: RelocationError | None = None


@dataclass
class BuildResult:
    """Outcome of building a disk without launching it."""

    output: Path
    disk_format: str
    kernel: str | None = None


def check_backend(descriptor: BackendDescriptor, settings: Settings, system: str | None = None) -> None:
    """Reject a backend that cannot run on this host.

    Raises:
        UnavailableBackendError: If the host OS is unsupported or the
            backend's probe fails.
    """
    if not descriptor.supports_platform(system):
        supported = ", ".join(sorted(descriptor.platforms))
        raise UnavailableBackendError(
            f"{descriptor.display_name} is only supported on {supported}",
            step=Step.CHECK_AVAILABILITY,
        )
    if not descriptor.is_available(settings):
        raise UnavailableBackendError(
            descriptor.unavailable_message, step=Step.CHECK_AVAILABILITY
        )


def default_vm_name(config: VMConfig) -> str:
    return config.info.name or f"diskrun-{uuid.uuid4().hex[:8]}"


def _open_scope(scope: ResourceScope) -> None:
    try:
        scope.open()
    except OSError as e:
        raise BuildFailureError(
            f"Failed to create build resources: {e}", step=Step.ACQUIRE_SCOPE
        ) from e


def _close_built_disk(scope: ResourceScope) -> None:
    try:
        scope.close_disk()
    except OSError as e:
        raise BuildFailureError(
            f"Failed to write disk: {e}", step=Step.BUILD_DISK
        ) from e


def launch(
    request: LaunchRequest,
    *,
    settings: Settings,
    engine: ImageEngine,
    allocator: AddressAllocator | None = None,
    registry: dict[BackendId, BackendDescriptor] | None = None,
) -> LaunchResult:
    """Build a disk for a package and run it under the requested backend.

    Blocks until the VM exits. The temporary disk lives as long as the VM.

    Args:
        request: Build-and-run request.
        settings: Application settings.
        engine: Image engine building the disk.
        allocator: Address allocator for backends that assign addresses.
            If not given and one is needed, an allocator is opened from
            settings and closed before returning.
        registry: Backend registry (defaults to all built-in backends).

    Returns:
        LaunchResult describing the run.

    Raises:
        ValueError: If the backend is unknown.
        DiskrunError: Subclass matching the failing step.
    """
    descriptor = get_backend(request.backend, registry)
    check_backend(descriptor, settings)

    if request.options.gui and not descriptor.supports_gui:
        logger.warning("%s does not support displaying a gui", descriptor.display_name)

    if descriptor.prepare_host is not None:
        descriptor.prepare_host(settings)

    config = request.config.model_copy(deep=True).with_defaults()
    name = request.name or default_vm_name(config)
    result = LaunchResult(backend=descriptor.backend_id, vm_name=name, config=config)

    owned_allocator: AddressAllocator | None = None
    if descriptor.assigns_addresses:
        if allocator is None and config.networks:
            allocator = owned_allocator = AddressAllocator.from_settings(settings)
    else:
        allocator = None

    scope = ResourceScope(
        prefix=f"diskrun-{descriptor.backend_id.value}",
        disk_filename=descriptor.disk_filename,
        parent=settings.tmp_dir,
        output=request.disk_output,
    )
    try:
        _open_scope(scope)
        result.disk_path = scope.disk_path

        kernel = build_disk(
            scope.disk,
            request.reader,
            descriptor.disk_format,
            request.options.kernel_options(),
            config,
            engine,
            allocator=allocator,
            owner=name,
        )
        _close_built_disk(scope)
        scope.mark_built()
        result.kernel = kernel

        try:
            request.reader.close()
        except OSError as e:
            raise ReaderCloseError(
                f"Failed to close package reader: {e}", step=Step.CLOSE_READER
            ) from e

        if descriptor.reports_kernel and kernel:
            config.vm.kernel = kernel

        try:
            data = descriptor.make_config(request.options, settings).marshal()
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid {descriptor.display_name} configuration: {e}",
                step=Step.CONFIGURE_BACKEND,
            ) from e

        virtualizer = descriptor.alloc(settings)
        result.virtualizer = virtualizer
        virtualizer.initialize(data)
        virtualizer.start(scope.disk_path, config, name)
        try:
            result.exit_code = virtualizer.wait()
        except BaseException:
            virtualizer.stop()
            raise
    finally:
        result.relocation_error = scope.finalize()
        if owned_allocator is not None:
            owned_allocator.close()

    if result.relocation_error is not None:
        logger.warning("%s", result.relocation_error)
    return result


def build_only(
    reader: PackageReader,
    config: VMConfig,
    disk_format: DiskFormat,
    output: Path,
    *,
    settings: Settings,
    engine: ImageEngine,
    options: LaunchOptions | None = None,
    allocator: AddressAllocator | None = None,
) -> BuildResult:
    """Build a disk image in any format and save it to ``output``.

    Declared networks are resolved only if an allocator is given.

    Raises:
        DiskrunError: If building fails or the disk cannot be saved.
    """
    options = options or LaunchOptions()
    config = config.model_copy(deep=True).with_defaults()
    scope = ResourceScope(
        prefix="diskrun-build",
        disk_filename=f"disk{disk_format.extension}",
        parent=settings.tmp_dir,
        output=output,
    )
    try:
        _open_scope(scope)
        kernel = build_disk(
            scope.disk,
            reader,
            disk_format,
            options.kernel_options(),
            config,
            engine,
            allocator=allocator,
            owner=default_vm_name(config),
        )
        _close_built_disk(scope)
        scope.mark_built()
    finally:
        relocation_error = scope.finalize()

    if relocation_error is not None:
        raise relocation_error
    logger.info("Saved %s disk to %s", disk_format.name, output)
    return BuildResult(output=Path(output), disk_format=disk_format.name, kernel=kernel)


__all__ = [
    "BuildResult",
    "LaunchRequest",
    "LaunchResult",
    "build_only",
    "check_backend",
    "default_vm_name",
    "launch",
]

"""Disk build pipeline.

Converts a package's file tree and kernel options into a bootable disk
image written to a target file:

1. Resolve declared network interfaces through the address allocator
   (only when an allocator is supplied)
2. Compile the package's file tree
3. Create an image builder for the compiler, kernel options and the
   format's default MTU
4. Negotiate the final image size
5. Encode the image into the target

Any failure aborts the pipeline; a partially written target is never
usable.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, BinaryIO

from diskrun.disk.formats import DiskFormat, align_up
from diskrun.errors import BuildFailureError, DiskrunError
from diskrun.network.allocator import assign_addresses
from diskrun.packages.schema import DEFAULT_DISK_DELTA, DiskSize, format_size
from diskrun.types import KernelOptions, Step

if TYPE_CHECKING:
    from diskrun.disk.engine import ImageBuilder, ImageEngine
    from diskrun.network.allocator import AddressAllocator
    from diskrun.packages.reader import PackageReader
    from diskrun.packages.schema import VMConfig

logger = logging.getLogger(__name__)


def negotiate_size(builder: ImageBuilder, config: VMConfig, disk_format: DiskFormat) -> int:
    """Negotiate the final image size with the builder.

    Args:
        builder: Image builder.
        config: VM configuration carrying the requested disk size.
        disk_format: Target format, providing the size alignment.

    Returns:
        Final image size in bytes.

    Raises:
        BuildFailureError: If the negotiated size is unusable.
    """
    requested = config.vm.disk_size or DiskSize(size=DEFAULT_DISK_DELTA, delta=True)
    size = builder.negotiate_size(requested, disk_format.alignment)

    if size <= 0:
        raise BuildFailureError(
            f"Image builder negotiated an invalid size: {size}", step=Step.BUILD_DISK
        )
    if size != align_up(size, disk_format.alignment):
        raise BuildFailureError(
            f"Negotiated size {size} is not a multiple of {disk_format.alignment} "
            f"required by {disk_format.name}",
            step=Step.BUILD_DISK,
        )
    if not requested.delta and size < requested.size:
        raise BuildFailureError(
            f"Negotiated size {format_size(size)} is smaller than the requested "
            f"{format_size(requested.size)}",
            step=Step.BUILD_DISK,
        )

    logger.info("Disk size: %s (requested %s)", format_size(size), requested)
    return size


def build_disk(
    target: BinaryIO,
    reader: PackageReader,
    disk_format: DiskFormat,
    kernel_options: KernelOptions,
    config: VMConfig,
    engine: ImageEngine,
    allocator: AddressAllocator | None = None,
    owner: str | None = None,
) -> str | None:
    """Build a disk image into ``target``.

    Args:
        target: Writable, seekable file receiving the image.
        reader: Open package reader.
        disk_format: Target binary format.
        kernel_options: Kernel boot options.
        config: VM configuration; network interfaces are resolved in place
            when an allocator is given.
        engine: Image engine.
        allocator: Address allocator for declared network interfaces.
        owner: Name recorded with address leases.

    Returns:
        Identifier of the kernel build embedded in the image, if the
        builder reports one.

    Raises:
        NetworkExhaustedError: If the allocator runs out of addresses.
        BuildFailureError: If construction, negotiation or encoding fails.
    """
    if config.networks and allocator is not None:
        assign_addresses(config, allocator, owner=owner)

    logger.info("Building %s disk", disk_format.name)
    try:
        compiler = engine.create_compiler(reader.file_tree(), config)
        builder = engine.create_builder(
            compiler, kernel_options, config, disk_format.default_mtu
        )
    except DiskrunError:
        raise
    except Exception as e:
        raise BuildFailureError(
            f"Failed to create image builder: {e}", step=Step.BUILD_DISK
        ) from e

    try:
        negotiate_size(builder, config, disk_format)
        encoder = engine.encoder(disk_format)
        encoder.build(target, builder, config)
        target.flush()
        kernel = builder.kernel_build_identifier()
    except DiskrunError:
        raise
    except Exception as e:
        raise BuildFailureError(
            f"Failed to build {disk_format.name} disk: {e}", step=Step.BUILD_DISK
        ) from e
    finally:
        builder.close()

    if kernel:
        logger.info("Built disk with kernel %s", kernel)
    return kernel or None


__all__ = ["build_disk", "negotiate_size"]

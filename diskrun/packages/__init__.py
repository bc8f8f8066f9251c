"""Package access and VM configuration.

This module handles:
- The VM configuration schema carried by packages
- The package reader protocol
- Reading unpacked package directories
"""

from diskrun.packages.reader import (
    DirectoryPackageReader,
    PackageError,
    PackageReader,
    open_package,
)
from diskrun.packages.schema import DiskSize, NetworkInterface, VMConfig

__all__ = [
    "DirectoryPackageReader",
    "DiskSize",
    "NetworkInterface",
    "PackageError",
    "PackageReader",
    "VMConfig",
    "open_package",
]

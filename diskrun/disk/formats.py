"""Disk image formats.

A format names the binary layout the image engine encodes and carries the
defaults the pipeline needs: file extension, default network MTU baked
into the image, and the size alignment the format requires.
"""

from dataclasses import dataclass

MIB = 1024 * 1024
GIB = 1024 * MIB


@dataclass(frozen=True)
class DiskFormat:
    """A disk image binary format.

    Attributes:
        name: Format identifier understood by image engines.
        extension: File extension including the dot.
        default_mtu: Network MTU written into guests built for this format.
        alignment: Final image size must be a multiple of this.
    """

    name: str
    extension: str
    default_mtu: int = 1500
    alignment: int = MIB

    def __str__(self) -> str:
        return self.name


RAW = DiskFormat("raw", ".raw")
VMDK_SPARSE = DiskFormat("vmdk-sparse", ".vmdk")
VMDK_STREAM_OPTIMIZED = DiskFormat("vmdk-stream-optimized", ".vmdk")
VHD_FIXED = DiskFormat("vhd-fixed", ".vhd")
VHD_DYNAMIC = DiskFormat("vhd-dynamic", ".vhd")
GCP_ARCHIVE = DiskFormat("gcp-archive", ".tar.gz", default_mtu=1460, alignment=GIB)

FORMATS: dict[str, DiskFormat] = {
    f.name: f
    for f in (RAW, VMDK_SPARSE, VMDK_STREAM_OPTIMIZED, VHD_FIXED, VHD_DYNAMIC, GCP_ARCHIVE)
}


def get_format(name: str) -> DiskFormat:
    """Look up a format by name.

    Raises:
        ValueError: If the format is unknown.
    """
    try:
        return FORMATS[name]
    except KeyError:
        valid = ", ".join(sorted(FORMATS))
        raise ValueError(f"Unknown disk format '{name}' (valid: {valid})") from None


def align_up(size: int, alignment: int) -> int:
    """Round ``size`` up to a multiple of ``alignment``."""
    if alignment <= 1:
        return size
    return -(-size // alignment) * alignment


__all__ = [
    "DiskFormat",
    "FORMATS",
    "GCP_ARCHIVE",
    "RAW",
    "VHD_DYNAMIC",
    "VHD_FIXED",
    "VMDK_SPARSE",
    "VMDK_STREAM_OPTIMIZED",
    "align_up",
    "get_format",
]

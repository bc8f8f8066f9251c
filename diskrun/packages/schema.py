"""Pydantic models for the VM configuration carried by a package.

The configuration describes VM resource hints, declared network
interfaces and the programs a package runs. Sizes accept integers (bytes)
or human strings such as ``"64 MiB"``; a disk size may be written as a
delta over the image's minimum size (``"+64 MiB"``).
"""

import re
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*([kmgt]?)(?:i?b)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4}

DEFAULT_CPUS = 1
DEFAULT_RAM = 256 * 1024**2
DEFAULT_DISK_DELTA = 64 * 1024**2
DEFAULT_KERNEL = "latest"
DEFAULT_MTU = 1500


def parse_size(value: Any) -> int:
    """Parse a size into bytes.

    Args:
        value: Integer byte count or string like '64 MiB', '1G', '512'.

    Returns:
        Size in bytes.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"size must not be negative, got {value}")
        return value
    if isinstance(value, str):
        match = _SIZE_PATTERN.match(value)
        if match:
            number, unit = match.groups()
            return int(number) * _SIZE_UNITS[unit.lower()]
    raise ValueError(f"invalid size: {value!r}")


def format_size(num_bytes: int) -> str:
    """Render a byte count with the largest exact binary unit."""
    for suffix, factor in (("TiB", 1024**4), ("GiB", 1024**3), ("MiB", 1024**2), ("KiB", 1024)):
        if num_bytes and num_bytes % factor == 0:
            return f"{num_bytes // factor} {suffix}"
    return f"{num_bytes} B"


Size = Annotated[int, BeforeValidator(parse_size)]


class DiskSize(BaseModel):
    """Requested disk size, absolute or as a delta over the minimum.

    Attributes:
        size: Size in bytes.
        delta: Whether ``size`` is added to the image's minimum size.
    """

    model_config = ConfigDict(frozen=True)

    size: int = Field(ge=0)
    delta: bool = False

    @model_validator(mode="before")
    @classmethod
    def parse_text(cls, data: Any) -> Any:
        """Accept '+64 MiB', '1 GiB' or a plain byte count."""
        if isinstance(data, (int, str)) and not isinstance(data, bool):
            text = data.strip() if isinstance(data, str) else data
            delta = isinstance(text, str) and text.startswith("+")
            if delta:
                text = text[1:]
            return {"size": parse_size(text), "delta": delta}
        return data

    def __str__(self) -> str:
        prefix = "+" if self.delta else ""
        return f"{prefix}{format_size(self.size)}"


class Info(BaseModel):
    """Descriptive package metadata."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    version: str | None = None
    summary: str | None = None


class VMSettings(BaseModel):
    """VM resource hints.

    Attributes:
        cpus: Number of virtual CPUs.
        ram: Guest memory in bytes.
        disk_size: Requested disk size.
        kernel: Kernel build identifier; replaced by the embedded build
            for backends that report it.
        inodes: Minimum inode count for the guest filesystem (0 = auto).
    """

    model_config = ConfigDict(extra="forbid")

    cpus: int | None = Field(default=None, ge=1)
    ram: Size | None = None
    disk_size: DiskSize | None = None
    kernel: str | None = None
    inodes: int = Field(default=0, ge=0)


class NetworkInterface(BaseModel):
    """A declared network interface slot.

    ``ip``, ``gateway`` and ``mask`` are resolved before building when the
    backend assigns addresses.
    """

    model_config = ConfigDict(extra="forbid")

    ip: str | None = None
    gateway: str | None = None
    mask: str | None = None
    mtu: int | None = Field(default=None, ge=68, le=65535)
    http: list[str] = Field(default_factory=list)
    https: list[str] = Field(default_factory=list)
    tcp: list[str] = Field(default_factory=list)
    udp: list[str] = Field(default_factory=list)

    def is_resolved(self) -> bool:
        """Check if address, gateway and mask are all set."""
        return bool(self.ip and self.gateway and self.mask)


class Program(BaseModel):
    """A program the guest runs on boot."""

    model_config = ConfigDict(extra="forbid")

    binary: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class VMConfig(BaseModel):
    """Target configuration of a build request."""

    model_config = ConfigDict(extra="forbid")

    info: Info = Field(default_factory=Info)
    vm: VMSettings = Field(default_factory=VMSettings)
    networks: list[NetworkInterface] = Field(default_factory=list)
    programs: list[Program] = Field(default_factory=list)

    def with_defaults(self) -> "VMConfig":
        """Fill unset fields with defaults in place.

        Returns:
            This configuration, for chaining.
        """
        if self.vm.cpus is None:
            self.vm.cpus = DEFAULT_CPUS
        if self.vm.ram is None:
            self.vm.ram = DEFAULT_RAM
        if self.vm.disk_size is None:
            self.vm.disk_size = DiskSize(size=DEFAULT_DISK_DELTA, delta=True)
        if not self.vm.kernel:
            self.vm.kernel = DEFAULT_KERNEL
        for network in self.networks:
            if network.mtu is None:
                network.mtu = DEFAULT_MTU
        return self


__all__ = [
    "DEFAULT_CPUS",
    "DEFAULT_DISK_DELTA",
    "DEFAULT_KERNEL",
    "DEFAULT_MTU",
    "DEFAULT_RAM",
    "DiskSize",
    "Info",
    "NetworkInterface",
    "Program",
    "Size",
    "VMConfig",
    "VMSettings",
    "format_size",
    "parse_size",
]

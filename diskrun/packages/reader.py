"""Package readers.

A package reader exposes the package's file tree and must be closed once
the disk has been built, before the virtualizer is configured. Package
formats are decoded by external readers; this module provides the
reader protocol and a reader for unpacked package directories.
"""

import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml
from pydantic import ValidationError

from diskrun.packages.schema import VMConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("diskrun.yaml", "diskrun.yml", "diskrun.json")


class PackageError(Exception):
    """Raised when a package cannot be opened or its configuration is invalid."""

    def __init__(self, message: str, code: str = "package_error") -> None:
        super().__init__(message)
        self.code = code


@runtime_checkable
class PackageReader(Protocol):
    """Read-only view over a package."""

    def file_tree(self) -> Any:
        """Return the package's file tree."""
        ...

    def vm_config(self) -> VMConfig:
        """Return the VM configuration shipped with the package."""
        ...

    def close(self) -> None:
        """Release the reader. Raises OSError on failure."""
        ...


def load_config_data(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON configuration file as a mapping.

    Args:
        path: Path to the file.

    Returns:
        Parsed content as a dictionary.

    Raises:
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        if path.suffix == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {path.name}, got {type(data).__name__}")
    return data


def load_vm_config(path: Path) -> VMConfig:
    """Load and validate a VM configuration file.

    Raises:
        PackageError: If the file is unreadable or fails validation.
    """
    try:
        data = load_config_data(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise PackageError(f"Cannot read configuration {path}: {e}") from e
    try:
        return VMConfig.model_validate(data)
    except ValidationError as e:
        raise PackageError(
            f"Invalid configuration in {path}: {e}", code="invalid_config"
        ) from e


class DirectoryPackageReader:
    """Package reader over an unpacked package directory.

    The directory is the guest file tree. The VM configuration is read
    from the first of ``diskrun.yaml``, ``diskrun.yml`` or ``diskrun.json``
    at its root; a package without one gets an empty configuration.
    """

    def __init__(self, root: Path) -> None:
        root = Path(root)
        if not root.is_dir():
            raise PackageError(f"Package directory not found: {root}", code="package_not_found")
        self.root = root
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def file_tree(self) -> Path:
        if self._closed:
            raise PackageError(f"Package reader for {self.root} is closed")
        return self.root

    def config_path(self) -> Path | None:
        for name in CONFIG_FILENAMES:
            candidate = self.root / name
            if candidate.is_file():
                return candidate
        return None

    def vm_config(self) -> VMConfig:
        path = self.config_path()
        if path is None:
            logger.debug("No configuration file in %s, using empty config", self.root)
            return VMConfig()
        return load_vm_config(path)

    def close(self) -> None:
        if not self._closed:
            logger.debug("Closed package reader for %s", self.root)
        self._closed = True

    def __enter__(self) -> "DirectoryPackageReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_package(path: Path) -> DirectoryPackageReader:
    """Open a package directory for reading."""
    return DirectoryPackageReader(path)


__all__ = [
    "CONFIG_FILENAMES",
    "DirectoryPackageReader",
    "PackageError",
    "PackageReader",
    "load_config_data",
    "load_vm_config",
    "open_package",
]

"""Image engine interfaces.

The image engine converts a package's file tree plus kernel options into
a bootable image in a given format. diskrun drives an engine through the
protocols below; engines are loaded from a ``module:attribute``
reference configured in settings.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, runtime_checkable

from diskrun.errors import DiskrunError

if TYPE_CHECKING:
    from diskrun.disk.formats import DiskFormat
    from diskrun.packages.schema import DiskSize, VMConfig
    from diskrun.types import KernelOptions

logger = logging.getLogger(__name__)


class EngineLoadError(DiskrunError):
    """Raised when the configured image engine cannot be loaded."""

    default_code = "engine_unavailable"


@runtime_checkable
class ImageBuilder(Protocol):
    """Builds one image from a compiled file tree."""

    def negotiate_size(self, requested: DiskSize, alignment: int) -> int:
        """Fix the final image size in bytes.

        ``requested`` is either absolute or a delta over the builder's
        minimum; the result must be a multiple of ``alignment``.
        """
        ...

    def kernel_build_identifier(self) -> str | None:
        """Return the kernel build embedded in the image, once built."""
        ...

    def close(self) -> None:
        """Release builder resources."""
        ...


@runtime_checkable
class DiskEncoder(Protocol):
    """Streams a built filesystem and kernel into a target format."""

    def build(self, target: BinaryIO, builder: ImageBuilder, config: VMConfig) -> None:
        ...


@runtime_checkable
class ImageEngine(Protocol):
    """Factory for the collaborators of one disk build."""

    def create_compiler(self, file_tree: Any, config: VMConfig) -> Any:
        """Return a file-tree compiler bound to ``file_tree``."""
        ...

    def create_builder(
        self,
        compiler: Any,
        kernel_options: KernelOptions,
        config: VMConfig,
        mtu: int,
    ) -> ImageBuilder:
        ...

    def encoder(self, disk_format: DiskFormat) -> DiskEncoder:
        """Return the encoder for a format. Raises ValueError if unsupported."""
        ...


def load_image_engine(reference: str | None) -> ImageEngine:
    """Load an image engine from a ``module:attribute`` reference.

    A callable attribute that is not itself an engine is called without
    arguments to produce one.

    Raises:
        EngineLoadError: If the reference is missing, malformed or
            does not resolve to an engine.
    """
    if not reference:
        raise EngineLoadError(
            "No image engine configured; set DISKRUN_IMAGE_ENGINE to 'module:attribute'"
        )
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise EngineLoadError(
            f"Invalid image engine reference '{reference}', expected 'module:attribute'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise EngineLoadError(f"Cannot import image engine module '{module_name}': {e}") from e

    try:
        target = getattr(module, attribute)
    except AttributeError as e:
        raise EngineLoadError(f"Module '{module_name}' has no attribute '{attribute}'") from e

    if isinstance(target, type) or (
        callable(target) and not isinstance(target, ImageEngine)
    ):
        engine = target()
    else:
        engine = target
    if not isinstance(engine, ImageEngine):
        raise EngineLoadError(f"'{reference}' does not provide an image engine")

    logger.debug("Loaded image engine %s", reference)
    return engine


__all__ = [
    "DiskEncoder",
    "EngineLoadError",
    "ImageBuilder",
    "ImageEngine",
    "load_image_engine",
]

"""Disk construction.

This module handles:
- Disk formats and their build defaults
- Image engine interfaces and loading
- The disk build pipeline
- Per-build scratch resources
"""

from diskrun.disk.engine import (
    DiskEncoder,
    EngineLoadError,
    ImageBuilder,
    ImageEngine,
    load_image_engine,
)
from diskrun.disk.formats import FORMATS, DiskFormat, get_format
from diskrun.disk.pipeline import build_disk
from diskrun.disk.scope import ResourceScope

__all__ = [
    "DiskEncoder",
    "DiskFormat",
    "EngineLoadError",
    "FORMATS",
    "ImageBuilder",
    "ImageEngine",
    "ResourceScope",
    "build_disk",
    "get_format",
    "load_image_engine",
]

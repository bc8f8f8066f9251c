"""Per-build resource scope.

A resource scope owns the scratch directory and temporary disk file of
one build. It is composed from two smaller scoped acquisitions and
guarantees, on every exit path, that:

1. The disk file handle is closed.
2. If the disk was built and an output path was requested, the disk is
   moved there. A failed move is logged and reported, never raised.
3. The disk file and the scratch directory are removed; removal errors
   are logged and already-absent paths are ignored.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import BinaryIO

from diskrun.errors import RelocationError

logger = logging.getLogger(__name__)

DISK_FILE_PREFIX = "diskrun.disk"


def _remove_path(path: Path) -> None:
    """Remove a file or directory tree, logging failures."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove %s: %s", path, e)


@contextmanager
def scratch_directory(prefix: str, parent: Path | None = None) -> Iterator[Path]:
    """Create a uniquely named scratch directory, removed on exit.

    Args:
        prefix: Directory name prefix; a random suffix is appended.
        parent: Parent directory (system temp directory if not set).

    Yields:
        Path to the created directory.
    """
    base = Path(parent) if parent is not None else Path(tempfile.gettempdir())
    base.mkdir(parents=True, exist_ok=True)
    path = base / f"{prefix}-{uuid.uuid4().hex[:10]}"
    path.mkdir()
    logger.debug("Created scratch directory %s", path)
    try:
        yield path
    finally:
        _remove_path(path)
        logger.debug("Removed scratch directory %s", path)


@contextmanager
def disk_file(directory: Path, filename: str | None = None) -> Iterator[BinaryIO]:
    """Create a writable, seekable disk file, closed and removed on exit.

    The file object's ``name`` is always the file's path.

    Args:
        directory: Directory to create the file in.
        filename: Exact file name, for backends that check extensions.
            A random name is used if not set.

    Yields:
        Binary file object opened for reading and writing.
    """
    if filename:
        path = directory / filename
    else:
        fd, name = tempfile.mkstemp(prefix=DISK_FILE_PREFIX, dir=directory)
        os.close(fd)
        path = Path(name)
    try:
        f: BinaryIO = open(path, "w+b")
    except OSError:
        _remove_path(path)
        raise
    try:
        yield f
    finally:
        _close_quietly(f, path)
        _remove_path(path)


def _close_quietly(f: BinaryIO, path: Path) -> None:
    """Close a file handle, logging a failed final flush."""
    try:
        f.close()
    except OSError as e:
        logger.warning("Failed to close %s: %s", path, e)


def relocate_disk(source: Path, destination: Path) -> RelocationError | None:
    """Move a built disk to a requested output path.

    Returns:
        None on success, or the RelocationError describing the failure.
    """
    logger.info("Copying disk to %s", destination)
    try:
        shutil.move(str(source), str(destination))
    except OSError as e:
        logger.error("Failed to copy disk to '%s': %s", destination, e)
        return RelocationError(str(source), str(destination), str(e))
    logger.info("Copied disk")
    return None


class ResourceScope:
    """Scratch directory and temporary disk file of one build.

    Use as a context manager, or call ``open()`` and ``finalize()``
    explicitly. ``finalize()`` is idempotent.
    """

    def __init__(
        self,
        prefix: str,
        disk_filename: str | None = None,
        parent: Path | None = None,
        output: Path | str | None = None,
    ) -> None:
        self.prefix = prefix
        self.disk_filename = disk_filename
        self.parent = parent
        self.output = Path(output) if output else None
        self.directory: Path | None = None
        self.disk: BinaryIO | None = None
        self.relocation_error: RelocationError | None = None
        self._disk_path: Path | None = None
        self._stack: ExitStack | None = None
        self._built = False
        self._finalized = False

    @property
    def disk_path(self) -> Path:
        if self._disk_path is None:
            raise RuntimeError("Resource scope is not open")
        return self._disk_path

    @property
    def built(self) -> bool:
        return self._built

    def open(self) -> ResourceScope:
        """Create the scratch directory and disk file.

        Raises:
            OSError: If either cannot be created; anything already
                created is removed first.
        """
        if self._stack is not None:
            return self
        stack = ExitStack()
        try:
            self.directory = stack.enter_context(
                scratch_directory(self.prefix, self.parent)
            )
            self.disk = stack.enter_context(disk_file(self.directory, self.disk_filename))
        except BaseException:
            stack.close()
            raise
        self._disk_path = Path(self.disk.name)
        self._stack = stack
        self._finalized = False
        return self

    def close_disk(self) -> None:
        """Flush and close the disk file handle."""
        if self.disk is not None and not self.disk.closed:
            self.disk.close()

    def mark_built(self) -> None:
        """Record that the disk is complete and may be saved."""
        self._built = True

    def finalize(self, output: Path | str | None = None) -> RelocationError | None:
        """Release all resources, saving the disk first if requested.

        Never raises: cleanup failures are logged so that an error already
        propagating from the build or the run is not replaced.

        Args:
            output: Output path; defaults to the one given at construction.

        Returns:
            The relocation error, if saving the disk failed.
        """
        if self._finalized:
            return self.relocation_error
        self._finalized = True
        stack, self._stack = self._stack, None
        if stack is None:
            return None

        destination = Path(output) if output else self.output
        with stack:
            close_error: OSError | None = None
            try:
                self.close_disk()
            except OSError as e:
                close_error = e
                logger.warning("Failed to close disk %s: %s", self.disk_path, e)
            if destination is not None:
                if self._built and close_error is not None:
                    # The disk may be incomplete
                    self.relocation_error = RelocationError(
                        str(self.disk_path), str(destination), str(close_error)
                    )
                elif self._built:
                    self.relocation_error = relocate_disk(self.disk_path, destination)
                else:
                    logger.warning("Disk was not built; not saving to %s", destination)
        return self.relocation_error

    def __enter__(self) -> ResourceScope:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.finalize()


__all__ = [
    "DISK_FILE_PREFIX",
    "ResourceScope",
    "disk_file",
    "relocate_disk",
    "scratch_directory",
]

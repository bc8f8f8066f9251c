"""Shared fixtures and fakes for diskrun tests.

The image engine and hypervisors are external; tests drive the core
through the in-process fakes below.
"""

from dataclasses import replace
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from diskrun.config import Settings
from diskrun.db import create_all_tables
from diskrun.disk.formats import align_up
from diskrun.errors import StartFailureError
from diskrun.network.allocator import AddressAllocator
from diskrun.packages.schema import VMConfig
from diskrun.types import BackendId, Step, VirtualizerState
from diskrun.virtualizers import firecracker, qemu
from diskrun.virtualizers.base import Virtualizer

MIB = 1024 * 1024


class FakeBuilder:
    """Image builder with a fixed minimum size."""

    def __init__(self, minimum: int = 8 * MIB, kernel: str | None = "5.10.77") -> None:
        self.minimum = minimum
        self.kernel = kernel
        self.requested = None
        self.closed = False

    def negotiate_size(self, requested, alignment):
        self.requested = requested
        if requested.delta:
            size = self.minimum + requested.size
        else:
            size = max(self.minimum, requested.size)
        return align_up(size, alignment)

    def kernel_build_identifier(self):
        return self.kernel

    def close(self):
        self.closed = True


class FakeEncoder:
    """Writes a fixed payload, or raises ``error``."""

    def __init__(self, payload: bytes = b"DISKRUN", error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error

    def build(self, target, builder, config):
        if self.error is not None:
            raise self.error
        target.write(self.payload)


class FakeEngine:
    """Image engine recording what it was asked to build."""

    def __init__(self, builder: FakeBuilder | None = None, encoder: FakeEncoder | None = None) -> None:
        self.builder = builder or FakeBuilder()
        self.disk_encoder = encoder or FakeEncoder()
        self.file_tree = None
        self.kernel_options = None
        self.mtu = None
        self.built_config = None
        self.disk_format = None

    def create_compiler(self, file_tree, config):
        self.file_tree = file_tree
        return ("compiler", file_tree)

    def create_builder(self, compiler, kernel_options, config, mtu):
        self.kernel_options = kernel_options
        self.mtu = mtu
        self.built_config = config.model_copy(deep=True)
        return self.builder

    def encoder(self, disk_format):
        self.disk_format = disk_format
        return self.disk_encoder


class FakeReader:
    """Package reader over an arbitrary file tree object."""

    def __init__(self, config: VMConfig | None = None, close_error: Exception | None = None) -> None:
        self.config = config or VMConfig()
        self.close_error = close_error
        self.closed = False
        self.close_calls = 0

    def file_tree(self):
        if self.closed:
            raise AssertionError("file tree read after close")
        return "file-tree"

    def vm_config(self):
        return self.config

    def close(self):
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


class RecordingVirtualizer(Virtualizer):
    """Virtualizer that records its start call instead of spawning a process."""

    virtualizer_id = BackendId.QEMU
    config_type = qemu.QEMUConfig
    start_error: Exception | None = None

    def __init__(self, settings):
        super().__init__(settings)
        self.started_with = None
        self.disk_existed = None
        self.disk_content = None

    def start(self, disk, config, name):
        if self.state is not VirtualizerState.INITIALIZED:
            raise StartFailureError("not initialized", step=Step.START)
        if self.start_error is not None:
            raise self.start_error
        self.name = name
        self.started_with = (disk, config.model_copy(deep=True), name)
        self.disk_existed = disk.exists()
        self.disk_content = disk.read_bytes()
        self.state = VirtualizerState.RUNNING

    def wait(self):
        self.state = VirtualizerState.STOPPED
        return 0


def recording_type(config_type, backend_id=BackendId.QEMU, start_error=None):
    """Create a RecordingVirtualizer subclass accepting ``config_type``."""
    return type(
        f"Recording{config_type.__name__}",
        (RecordingVirtualizer,),
        {
            "config_type": config_type,
            "virtualizer_id": backend_id,
            "start_error": start_error,
        },
    )


def available(settings):
    return True


def unavailable(settings):
    return False


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated under tmp_path."""
    return Settings(
        state_dir=tmp_path / "state",
        db_url=f"sqlite:///{tmp_path / 'state' / 'diskrun.sqlite'}",
        tmp_dir=tmp_path / "scratch",
        kernel_dir=tmp_path / "kernels",
        bridge_name="drtest0",
        bridge_ip="10.26.10.1",
        network_cidr="10.26.10.0/24",
    )


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_all_tables(engine)
    return engine


@pytest.fixture
def session_factory(engine):
    """Create a session factory for testing."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """Create a session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def allocator(engine):
    """Allocator over a small /29 pool: 10.26.10.2 - 10.26.10.6."""
    allocator = AddressAllocator(cidr="10.26.10.0/29", gateway="10.26.10.1", engine=engine)
    yield allocator
    allocator.close()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def qemu_registry():
    """Registry with a qemu backend that never spawns a process."""
    descriptor = replace(
        qemu.DESCRIPTOR,
        virtualizer_type=RecordingVirtualizer,
        availability=available,
    )
    return {BackendId.QEMU: descriptor}


@pytest.fixture
def firecracker_registry():
    """Registry with a firecracker backend whose bridge already exists."""
    descriptor = replace(
        firecracker.DESCRIPTOR,
        virtualizer_type=recording_type(
            firecracker.FirecrackerConfig, BackendId.FIRECRACKER
        ),
        availability=available,
        prepare_host=None,
    )
    return {BackendId.FIRECRACKER: descriptor}

"""Backend registry."""

from diskrun.types import BackendId
from diskrun.virtualizers import firecracker, hyperv, qemu, virtualbox, vmware
from diskrun.virtualizers.base import BackendDescriptor

BACKENDS: dict[BackendId, BackendDescriptor] = {
    descriptor.backend_id: descriptor
    for descriptor in (
        vmware.DESCRIPTOR,
        firecracker.DESCRIPTOR,
        hyperv.DESCRIPTOR,
        virtualbox.DESCRIPTOR,
        qemu.DESCRIPTOR,
    )
}


def get_backend(
    name: str | BackendId,
    registry: dict[BackendId, BackendDescriptor] | None = None,
) -> BackendDescriptor:
    """Look up a backend descriptor by identifier.

    Raises:
        ValueError: If the backend is unknown.
    """
    registry = BACKENDS if registry is None else registry
    try:
        return registry[BackendId(name)]
    except (KeyError, ValueError):
        known = ", ".join(b.value for b in registry)
        raise ValueError(f"Unknown backend '{name}'; expected one of: {known}") from None


def list_backends(
    registry: dict[BackendId, BackendDescriptor] | None = None,
) -> list[BackendDescriptor]:
    registry = BACKENDS if registry is None else registry
    return list(registry.values())


__all__ = ["BACKENDS", "get_backend", "list_backends"]

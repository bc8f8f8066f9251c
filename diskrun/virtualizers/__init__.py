"""Hypervisor backends.

This module handles:
- Backend descriptors and the virtualizer lifecycle
- The vmware, firecracker, hyperv, virtualbox and qemu integrations
- The backend registry
"""

from diskrun.virtualizers.base import BackendConfig, BackendDescriptor, Virtualizer
from diskrun.virtualizers.registry import BACKENDS, get_backend, list_backends

__all__ = [
    "BACKENDS",
    "BackendConfig",
    "BackendDescriptor",
    "Virtualizer",
    "get_backend",
    "list_backends",
]

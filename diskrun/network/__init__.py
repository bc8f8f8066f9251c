"""Guest networking.

This module handles:
- The durable address queue and lease records
- Allocating addresses to declared network interfaces
- Provisioning the host bridge device
"""

from diskrun.network.allocator import (
    AddressAllocator,
    Lease,
    assign_addresses,
    candidate_addresses,
)
from diskrun.network.bridge import BridgeError, ensure_bridge, fetch_bridge_device

__all__ = [
    "AddressAllocator",
    "BridgeError",
    "Lease",
    "assign_addresses",
    "candidate_addresses",
    "ensure_bridge",
    "fetch_bridge_device",
]

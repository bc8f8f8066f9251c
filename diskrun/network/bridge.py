"""Host bridge device management.

Firecracker guests attach their tap devices to a host bridge. The bridge
is provisioned at the fixed bridge address the first time it is needed.
"""

from __future__ import annotations

import ipaddress
import logging
import shlex
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from diskrun.errors import UnavailableBackendError
from diskrun.types import Step

if TYPE_CHECKING:
    from diskrun.config import Settings

logger = logging.getLogger(__name__)

SYS_CLASS_NET = Path("/sys/class/net")


class BridgeError(Exception):
    """Raised when the bridge device cannot be queried or created."""

    def __init__(self, message: str, code: str = "bridge_error") -> None:
        super().__init__(message)
        self.code = code


def fetch_bridge_device(name: str) -> Path:
    """Return the sysfs entry of an existing bridge device.

    Raises:
        BridgeError: If the device does not exist or is not a bridge.
    """
    device = SYS_CLASS_NET / name
    if not device.exists():
        raise BridgeError(f"Bridge device not found: {name}", code="bridge_not_found")
    if not (device / "bridge").is_dir():
        raise BridgeError(f"Network device {name} is not a bridge", code="not_a_bridge")
    return device


def compose_bridge_commands(name: str, address: str, prefix_length: int) -> list[list[str]]:
    """Compose the `ip` commands creating a bridge at an address."""
    return [
        ["ip", "link", "add", "name", name, "type", "bridge"],
        ["ip", "addr", "add", f"{address}/{prefix_length}", "dev", name],
        ["ip", "link", "set", "dev", name, "up"],
    ]


def setup_bridge(name: str, address: str, prefix_length: int = 24) -> None:
    """Create a bridge device and bring it up.

    Raises:
        BridgeError: If any `ip` command fails.
    """
    logger.info("Creating bridge %s at %s/%d", name, address, prefix_length)
    for cmd in compose_bridge_commands(name, address, prefix_length):
        logger.debug("Executing: %s", shlex.join(cmd))
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise BridgeError(
                f"'{shlex.join(cmd)}' failed: {e.stderr.strip() or e.returncode}",
                code="bridge_setup_failed",
            ) from e
        except OSError as e:
            raise BridgeError(
                f"Failed to run '{cmd[0]}': {e}", code="bridge_setup_failed"
            ) from e


def ensure_bridge(settings: Settings) -> bool:
    """Make sure the configured bridge exists, creating it if absent.

    Returns:
        True if the bridge was created, False if it already existed.

    Raises:
        UnavailableBackendError: If the bridge cannot be provisioned.
    """
    try:
        fetch_bridge_device(settings.bridge_name)
        return False
    except BridgeError as e:
        logger.info("%s; provisioning it", e)

    prefix_length = ipaddress.IPv4Network(settings.network_cidr).prefixlen
    try:
        setup_bridge(settings.bridge_name, settings.bridge_ip, prefix_length)
    except BridgeError as e:
        raise UnavailableBackendError(
            f"Cannot provision bridge {settings.bridge_name}: {e}",
            step=Step.PREPARE_HOST,
        ) from e
    return True


__all__ = [
    "BridgeError",
    "compose_bridge_commands",
    "ensure_bridge",
    "fetch_bridge_device",
    "setup_bridge",
]

"""Network address allocator.

Hands out guest addresses from a durable FIFO queue. The queue is seeded
once per pool with every host address of the configured network except
the bridge address, in ascending order, and is drained monotonically:
leased addresses are recorded but never returned to the queue.

The allocator is an explicitly constructed service. It opens its
database lazily on first use and is closed by its owner at process exit.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from diskrun.db import create_all_tables, get_engine, get_session, get_session_factory
from diskrun.errors import NetworkExhaustedError
from diskrun.network.models import AddressLease, AddressPool, QueuedAddress

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.packages.schema import VMConfig

logger = logging.getLogger(__name__)

# Attempts to dequeue when another process removes the queue head first
MAX_DEQUEUE_ATTEMPTS = 16


@dataclass(frozen=True)
class Lease:
    """An address resolved for one network interface."""

    address: str
    gateway: str
    mask: str


def candidate_addresses(cidr: str, gateway: str) -> list[str]:
    """Compute the addresses a pool is seeded with.

    Args:
        cidr: IPv4 network in CIDR notation.
        gateway: Address reserved for the bridge.

    Returns:
        Host addresses of the network, ascending, without the gateway.
    """
    network = ipaddress.IPv4Network(cidr)
    return [str(host) for host in network.hosts() if str(host) != gateway]


class AddressAllocator:
    """Durable FIFO allocator of guest network addresses.

    Safe for concurrent use from several threads; dequeues from several
    processes sharing a database are serialized by the database.
    """

    def __init__(
        self,
        db_url: str | None = None,
        cidr: str = "10.26.10.0/24",
        gateway: str = "10.26.10.1",
        engine: Any | None = None,
    ) -> None:
        network = ipaddress.IPv4Network(cidr)
        if ipaddress.IPv4Address(gateway) not in network:
            raise ValueError(f"Gateway {gateway} is not inside {network}")
        self.cidr = str(network)
        self.gateway = gateway
        self.mask = str(network.netmask)
        self._db_url = db_url
        self._engine = engine
        self._owns_engine = engine is None
        self._session_factory: sessionmaker[Session] | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> AddressAllocator:
        """Create an allocator for the configured bridge network."""
        return cls(
            db_url=settings.db_url,
            cidr=settings.network_cidr,
            gateway=settings.bridge_ip,
        )

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    def open(self) -> None:
        """Open the database and seed the pool if it was never seeded."""
        with self._lock:
            self._open_locked()

    def _open_locked(self) -> sessionmaker[Session]:
        if self._session_factory is not None:
            return self._session_factory
        if self._engine is None:
            self._engine = get_engine(self._db_url)
        create_all_tables(self._engine)
        factory = get_session_factory(self._engine)
        self._seed(factory)
        self._session_factory = factory
        return factory

    def _seed(self, factory: sessionmaker[Session]) -> None:
        addresses = candidate_addresses(self.cidr, self.gateway)
        try:
            with get_session(factory) as session:
                seeded = session.execute(
                    select(AddressPool).where(AddressPool.cidr == self.cidr)
                ).scalar_one_or_none()
                if seeded is not None:
                    return
                session.add(AddressPool(cidr=self.cidr, size=len(addresses)))
                session.add_all(
                    QueuedAddress(cidr=self.cidr, address=address)
                    for address in addresses
                )
            logger.info("Seeded address pool %s with %d addresses", self.cidr, len(addresses))
        except IntegrityError:
            # Only a concurrent seed of the same pool is expected here
            with get_session(factory) as session:
                seeded = session.execute(
                    select(AddressPool).where(AddressPool.cidr == self.cidr)
                ).scalar_one_or_none()
            if seeded is None:
                raise
            logger.debug("Address pool %s already seeded", self.cidr)

    def allocate(self, owner: str | None = None) -> Lease:
        """Dequeue the next address.

        Args:
            owner: Name recorded with the lease.

        Returns:
            Lease with address, gateway and mask.

        Raises:
            NetworkExhaustedError: If the queue is empty.
        """
        with self._lock:
            factory = self._open_locked()
            for _ in range(MAX_DEQUEUE_ATTEMPTS):
                with get_session(factory) as session:
                    head = session.execute(
                        select(QueuedAddress)
                        .where(QueuedAddress.cidr == self.cidr)
                        .order_by(QueuedAddress.id)
                        .limit(1)
                    ).scalar_one_or_none()
                    if head is None:
                        raise NetworkExhaustedError(
                            f"No addresses left in pool {self.cidr}"
                        )
                    result = session.execute(
                        delete(QueuedAddress).where(QueuedAddress.id == head.id)
                    )
                    if result.rowcount != 1:
                        continue
                    lease = Lease(address=head.address, gateway=self.gateway, mask=self.mask)
                    session.add(
                        AddressLease(
                            address=lease.address,
                            gateway=lease.gateway,
                            mask=lease.mask,
                            owner=owner,
                        )
                    )
                logger.debug("Leased %s to %s", lease.address, owner or "(unnamed)")
                return lease
        raise NetworkExhaustedError(
            f"Could not dequeue an address from {self.cidr} after "
            f"{MAX_DEQUEUE_ATTEMPTS} attempts"
        )

    def remaining(self) -> int:
        """Return the number of addresses left in the queue."""
        with self._lock:
            factory = self._open_locked()
            with get_session(factory) as session:
                return session.execute(
                    select(func.count(QueuedAddress.id)).where(
                        QueuedAddress.cidr == self.cidr
                    )
                ).scalar_one()

    def leases(self, limit: int = 100) -> list[AddressLease]:
        """Return the most recent leases, newest first."""
        with self._lock:
            factory = self._open_locked()
            with get_session(factory) as session:
                stmt = (
                    select(AddressLease)
                    .order_by(AddressLease.id.desc())
                    .limit(limit)
                )
                return list(session.execute(stmt).scalars().all())

    def reset(self) -> None:
        """Drop the queue and pool marker so the pool is reseeded.

        Lease history is kept. Addresses still in use by running guests
        may be handed out again.
        """
        with self._lock:
            factory = self._open_locked()
            with get_session(factory) as session:
                session.execute(delete(QueuedAddress).where(QueuedAddress.cidr == self.cidr))
                session.execute(delete(AddressPool).where(AddressPool.cidr == self.cidr))
            logger.warning("Reset address pool %s", self.cidr)
            self._seed(factory)

    def close(self) -> None:
        """Release the database engine. The allocator reopens on next use."""
        with self._lock:
            if self._engine is not None and self._owns_engine:
                self._engine.dispose()
                self._engine = None
            self._session_factory = None

    def __enter__(self) -> AddressAllocator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def assign_addresses(
    config: VMConfig,
    allocator: AddressAllocator,
    owner: str | None = None,
) -> list[Lease]:
    """Resolve every declared network interface, in declaration order.

    Args:
        config: VM configuration whose interfaces are updated in place.
        allocator: Address allocator to draw from.
        owner: Name recorded with each lease.

    Returns:
        One lease per declared interface.

    Raises:
        NetworkExhaustedError: If the allocator runs out. Leases taken
            before the failure stay consumed.
    """
    leases: list[Lease] = []
    for index, network in enumerate(config.networks):
        lease = allocator.allocate(owner=owner)
        network.ip = lease.address
        network.gateway = lease.gateway
        network.mask = lease.mask
        logger.info("Interface %d: %s/%s via %s", index, lease.address, lease.mask, lease.gateway)
        leases.append(lease)
    return leases


__all__ = [
    "AddressAllocator",
    "Lease",
    "MAX_DEQUEUE_ATTEMPTS",
    "assign_addresses",
    "candidate_addresses",
]

"""Network ORM models.

This module defines the durable address queue used by the address
allocator, the marker recording that a pool has been seeded, and the
audit trail of leased addresses.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from diskrun.db import Base


class AddressPool(Base):
    """ORM model marking a seeded address pool.

    A pool is seeded once. An empty queue for a seeded pool means the
    pool is exhausted.

    Attributes:
        id: Primary key.
        cidr: Network the pool was computed from.
        size: Number of addresses seeded.
        seeded_at: Timestamp of seeding.
    """

    __tablename__ = "address_pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cidr: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    seeded_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<AddressPool(cidr='{self.cidr}', size={self.size})>"


class QueuedAddress(Base):
    """ORM model for an address waiting in the allocator queue.

    The autoincrement primary key is the insertion order; the allocator
    always dequeues the lowest id. An address is unique within its pool;
    overlapping pools queue it independently.

    Attributes:
        id: Primary key (queue position).
        cidr: Pool the address belongs to.
        address: Dotted-quad address.
    """

    __tablename__ = "address_queue"
    __table_args__ = (UniqueConstraint("cidr", "address", name="uq_address_queue_cidr_address"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cidr: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<QueuedAddress(id={self.id}, address='{self.address}')>"


class AddressLease(Base):
    """ORM model for an address handed out by the allocator.

    Attributes:
        id: Primary key.
        address: Leased address.
        gateway: Gateway assigned with the address.
        mask: Subnet mask assigned with the address.
        owner: Name of the VM the address was leased for.
        leased_at: Timestamp of the lease.
    """

    __tablename__ = "address_leases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    gateway: Mapped[str] = mapped_column(String(64), nullable=False)
    mask: Mapped[str] = mapped_column(String(64), nullable=False)
    owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    leased_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<AddressLease(id={self.id}, address='{self.address}', "
            f"owner='{self.owner}')>"
        )


__all__ = ["AddressLease", "AddressPool", "QueuedAddress"]

"""Tests for network/allocator.py module.

Uses in-memory SQLite engines; file-backed databases are used where
persistence across allocator instances matters.
"""

import threading

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from diskrun.errors import NetworkExhaustedError
from diskrun.network.allocator import (
    AddressAllocator,
    Lease,
    assign_addresses,
    candidate_addresses,
)
from diskrun.network.models import AddressLease, AddressPool, QueuedAddress
from diskrun.packages.schema import NetworkInterface, VMConfig


class TestCandidateAddresses:
    """Tests for candidate_addresses."""

    def test_excludes_gateway(self):
        """Host addresses ascend and skip the bridge address."""
        assert candidate_addresses("10.26.10.0/29", "10.26.10.1") == [
            "10.26.10.2",
            "10.26.10.3",
            "10.26.10.4",
            "10.26.10.5",
            "10.26.10.6",
        ]

    def test_full_pool_size(self):
        """A /24 seeds 253 addresses."""
        assert len(candidate_addresses("10.26.10.0/24", "10.26.10.1")) == 253


class TestAddressAllocator:
    """Tests for AddressAllocator."""

    def test_gateway_outside_network(self):
        """The gateway must belong to the pool network."""
        with pytest.raises(ValueError):
            AddressAllocator(cidr="10.26.10.0/24", gateway="192.168.0.1")

    def test_opens_lazily(self, allocator):
        """Nothing is opened until first use."""
        assert not allocator.is_open
        allocator.remaining()
        assert allocator.is_open

    def test_fifo_order(self, allocator):
        """Addresses are handed out in ascending insertion order."""
        first = allocator.allocate()
        second = allocator.allocate()
        assert first == Lease("10.26.10.2", "10.26.10.1", "255.255.255.248")
        assert second.address == "10.26.10.3"
        assert allocator.remaining() == 3

    def test_exhaustion(self, allocator):
        """An empty seeded pool is exhausted, not reseeded."""
        for _ in range(5):
            allocator.allocate()
        with pytest.raises(NetworkExhaustedError) as exc_info:
            allocator.allocate()
        assert exc_info.value.code == "network_exhausted"
        assert allocator.remaining() == 0

    def test_records_leases(self, allocator, session_factory):
        """Each allocation is recorded with its owner."""
        allocator.allocate(owner="vm-a")
        allocator.allocate(owner="vm-b")

        leases = allocator.leases()
        assert [lease.owner for lease in leases] == ["vm-b", "vm-a"]
        with session_factory() as session:
            count = len(session.execute(select(AddressLease)).scalars().all())
        assert count == 2

    def test_seeds_once(self, allocator, engine, session_factory):
        """A second allocator on the same database continues the queue."""
        allocator.allocate()
        other = AddressAllocator(cidr="10.26.10.0/29", gateway="10.26.10.1", engine=engine)
        assert other.allocate().address == "10.26.10.3"
        with session_factory() as session:
            pools = session.execute(select(AddressPool)).scalars().all()
        assert len(pools) == 1

    def test_survives_restart(self, tmp_path):
        """The queue is durable across allocator instances."""
        db_url = f"sqlite:///{tmp_path / 'queue.sqlite'}"
        with AddressAllocator(db_url=db_url, cidr="10.26.10.0/29", gateway="10.26.10.1") as a:
            a.allocate()
        with AddressAllocator(db_url=db_url, cidr="10.26.10.0/29", gateway="10.26.10.1") as b:
            assert b.allocate().address == "10.26.10.3"

    def test_reopens_after_close(self, allocator):
        """allocate() after close() reopens the database."""
        allocator.allocate()
        allocator.close()
        assert not allocator.is_open
        assert allocator.allocate().address == "10.26.10.3"

    def test_reset_refills(self, allocator):
        """reset() reseeds the pool and keeps lease history."""
        allocator.allocate()
        allocator.allocate()
        allocator.reset()
        assert allocator.remaining() == 5
        assert allocator.allocate().address == "10.26.10.2"
        assert len(allocator.leases()) == 3

    def test_overlapping_pools_seed_independently(self, allocator, engine):
        """A new network sharing addresses with a used pool gets its own queue."""
        assert allocator.allocate().address == "10.26.10.2"

        wider = AddressAllocator(cidr="10.26.10.0/28", gateway="10.26.10.1", engine=engine)
        try:
            assert wider.remaining() == 13
            assert wider.allocate().address == "10.26.10.2"
        finally:
            wider.close()
        assert allocator.remaining() == 4

    def test_seed_conflict_without_pool_raises(self, allocator, session_factory):
        """A conflicting queue row that no seeded pool explains is not hidden."""
        with session_factory() as session:
            session.add(QueuedAddress(cidr="10.26.10.0/29", address="10.26.10.4"))
            session.commit()

        with pytest.raises(IntegrityError):
            allocator.allocate()

    def test_concurrent_allocations_unique(self, allocator):
        """Concurrent dequeues never hand out the same address twice."""
        results: list[str] = []
        errors: list[Exception] = []

        def worker():
            try:
                results.append(allocator.allocate().address)
            except NetworkExhaustedError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 5
        assert len(set(results)) == 5
        assert len(errors) == 3


class TestAssignAddresses:
    """Tests for assign_addresses."""

    def test_assigns_in_declaration_order(self, allocator):
        """Each interface gets one address, gateway and mask, in order."""
        config = VMConfig(networks=[NetworkInterface(), NetworkInterface(), NetworkInterface()])

        leases = assign_addresses(config, allocator, owner="vm")

        assert [n.ip for n in config.networks] == ["10.26.10.2", "10.26.10.3", "10.26.10.4"]
        assert all(n.gateway == "10.26.10.1" for n in config.networks)
        assert all(n.mask == "255.255.255.248" for n in config.networks)
        assert len(leases) == 3
        assert allocator.remaining() == 2

    def test_no_networks_no_allocation(self, allocator):
        """A configuration without networks does not touch the pool."""
        assert assign_addresses(VMConfig(), allocator) == []
        assert not allocator.is_open

    def test_partial_exhaustion(self, allocator):
        """Leases taken before exhaustion stay consumed."""
        config = VMConfig(networks=[NetworkInterface() for _ in range(6)])
        with pytest.raises(NetworkExhaustedError):
            assign_addresses(config, allocator)
        assert allocator.remaining() == 0

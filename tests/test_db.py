"""Tests for database helpers."""

import pytest
from sqlalchemy import inspect, select

from diskrun.db import create_all_tables, get_engine, get_session, get_session_factory
from diskrun.runs.models import RunRecord


class TestDatabase:
    """Tests for engine and session helpers."""

    def test_creates_sqlite_parent(self, tmp_path):
        """A file database gets its directory created."""
        db_path = tmp_path / "nested" / "state" / "diskrun.sqlite"
        engine = get_engine(f"sqlite:///{db_path}")
        create_all_tables(engine)
        assert db_path.parent.is_dir()
        engine.dispose()

    def test_all_tables(self, engine):
        """All models are registered."""
        tables = set(inspect(engine).get_table_names())
        assert {"address_pools", "address_queue", "address_leases", "run_records"} <= tables

    def test_session_commits(self, engine):
        """Leaving the block commits."""
        factory = get_session_factory(engine)
        with get_session(factory) as session:
            session.add(RunRecord(vm_name="vm", backend="qemu"))
        with get_session(factory) as session:
            assert session.execute(select(RunRecord)).scalar_one().vm_name == "vm"

    def test_session_rolls_back(self, engine):
        """An exception discards the transaction."""
        factory = get_session_factory(engine)
        with pytest.raises(RuntimeError):
            with get_session(factory) as session:
                session.add(RunRecord(vm_name="vm", backend="qemu"))
                session.flush()
                raise RuntimeError("abort")
        with get_session(factory) as session:
            assert session.execute(select(RunRecord)).first() is None

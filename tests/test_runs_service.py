"""Tests for runs/service.py and runs/models.py."""

from dataclasses import replace
from unittest.mock import patch

import pytest
from conftest import FakeReader, unavailable

from diskrun.errors import UnavailableBackendError
from diskrun.packages.schema import VMConfig
from diskrun.runs.models import RunRecord
from diskrun.runs.orchestrator import LaunchRequest
from diskrun.runs.service import RunNotFoundError, get_run, list_runs, run_and_record
from diskrun.types import BackendId, RunStatus


@pytest.fixture
def run_record(session):
    """Create a finished run record."""
    run = RunRecord(vm_name="seed", backend="vmware", status=RunStatus.SUCCEEDED.value)
    session.add(run)
    session.commit()
    return run


class TestRunRecord:
    """Tests for RunRecord state transitions."""

    def test_lifecycle(self):
        """A run moves from running to succeeded."""
        run = RunRecord(vm_name="vm", backend="qemu")
        run.mark_running()
        assert run.status == RunStatus.RUNNING.value
        assert run.started_at is not None
        run.mark_succeeded(exit_code=0, kernel="5.10.77")
        assert run.is_succeeded()
        assert run.kernel == "5.10.77"
        assert run.finished_at is not None

    def test_mark_failed(self):
        """Failures keep the error code and message."""
        run = RunRecord(vm_name="vm", backend="qemu")
        run.mark_failed(error_type="build_failed", message="boom")
        assert run.status == RunStatus.FAILED.value
        assert run.error_type == "build_failed"
        assert not run.is_succeeded()


class TestRunAndRecord:
    """Tests for run_and_record."""

    def test_success_recorded(self, session, settings, fake_engine, qemu_registry):
        """A successful launch is persisted as succeeded."""
        request = LaunchRequest(reader=FakeReader(), config=VMConfig(), backend=BackendId.QEMU, name="web")

        record, result = run_and_record(
            session, request, settings=settings, engine=fake_engine, registry=qemu_registry
        )

        assert record.status == RunStatus.SUCCEEDED.value
        assert record.vm_name == "web"
        assert record.backend == "qemu"
        assert record.exit_code == 0
        assert result.vm_name == "web"
        assert get_run(session, record.id) is record

    def test_failure_recorded(self, session, settings, fake_engine, qemu_registry):
        """Failures are committed with their code before re-raising."""
        registry = {BackendId.QEMU: replace(qemu_registry[BackendId.QEMU], availability=unavailable)}
        request = LaunchRequest(reader=FakeReader(), config=VMConfig(), backend="qemu", name="web")

        with pytest.raises(UnavailableBackendError):
            run_and_record(session, request, settings=settings, engine=fake_engine, registry=registry)

        session.rollback()
        [run] = list_runs(session)
        assert run.status == RunStatus.FAILED.value
        assert run.error_type == "backend_unavailable"

    @pytest.mark.parametrize(
        ("error", "error_type"),
        [(KeyboardInterrupt(), "interrupted"), (RuntimeError("engine crashed"), "internal_error")],
    )
    def test_unexpected_error_recorded(self, session, settings, fake_engine, qemu_registry, error, error_type):
        """Any other exception still leaves the run failed, never running."""
        request = LaunchRequest(reader=FakeReader(), config=VMConfig(), backend="qemu", name="web")

        with patch("diskrun.runs.service.launch", side_effect=error):
            with pytest.raises(type(error)):
                run_and_record(session, request, settings=settings, engine=fake_engine, registry=qemu_registry)

        session.rollback()
        [run] = list_runs(session)
        assert run.status == RunStatus.FAILED.value
        assert run.error_type == error_type
        assert run.finished_at is not None

    def test_relocation_error_recorded(self, session, settings, fake_engine, qemu_registry):
        """A failed disk copy is noted on an otherwise successful run."""
        request = LaunchRequest(
            reader=FakeReader(),
            config=VMConfig(),
            backend="qemu",
            disk_output=settings.state_dir / "missing" / "disk.raw",
        )
        record, _ = run_and_record(
            session, request, settings=settings, engine=fake_engine, registry=qemu_registry
        )
        assert record.is_succeeded()
        assert "disk.raw" in record.relocation_error
        assert record.disk_output.endswith("disk.raw")

    def test_generated_name(self, session, settings, fake_engine, qemu_registry):
        """Unnamed requests get a name before the record is created."""
        request = LaunchRequest(reader=FakeReader(), config=VMConfig(), backend="qemu")
        record, result = run_and_record(
            session, request, settings=settings, engine=fake_engine, registry=qemu_registry
        )
        assert record.vm_name == result.vm_name
        assert record.vm_name.startswith("diskrun-")


class TestQueries:
    """Tests for get_run and list_runs."""

    def test_get_missing(self, session):
        """Unknown ids raise RunNotFoundError."""
        with pytest.raises(RunNotFoundError) as exc_info:
            get_run(session, 999)
        assert exc_info.value.code == "run_not_found"

    def test_list_filters(self, session, run_record):
        """Runs can be filtered by backend and status."""
        session.add(RunRecord(vm_name="other", backend="qemu", status=RunStatus.FAILED.value))
        session.commit()

        assert [r.vm_name for r in list_runs(session)] == ["other", "seed"]
        assert [r.vm_name for r in list_runs(session, backend=BackendId.VMWARE)] == ["seed"]
        assert [r.vm_name for r in list_runs(session, status=RunStatus.FAILED)] == ["other"]
        assert len(list_runs(session, limit=1)) == 1

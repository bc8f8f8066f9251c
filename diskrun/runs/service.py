"""Run history service.

This module wraps the orchestrator with persisted run records:
- run_and_record(): launch a request and record its outcome
- Run lookup and listing
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from diskrun.errors import DiskrunError
from diskrun.runs.models import RunRecord
from diskrun.runs.orchestrator import LaunchRequest, LaunchResult, default_vm_name, launch
from diskrun.types import BackendId, RunStatus

if TYPE_CHECKING:
    from diskrun.config import Settings
    from diskrun.disk.engine import ImageEngine
    from diskrun.network.allocator import AddressAllocator
    from diskrun.virtualizers.base import BackendDescriptor

logger = logging.getLogger(__name__)


class RunNotFoundError(Exception):
    """Raised when a run record is not found."""

    def __init__(self, run_id: int, code: str = "run_not_found") -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id
        self.code = code


def run_and_record(
    session: Session,
    request: LaunchRequest,
    *,
    settings: Settings,
    engine: ImageEngine,
    allocator: AddressAllocator | None = None,
    registry: dict[BackendId, BackendDescriptor] | None = None,
) -> tuple[RunRecord, LaunchResult]:
    """Launch a request and persist a RunRecord for it.

    The record is committed as running before orchestration starts so
    the run is visible while the VM is up, and committed again with the
    outcome, including failures.

    Args:
        session: Database session.
        request: Build-and-run request.
        settings: Application settings.
        engine: Image engine.
        allocator: Address allocator passed to the orchestrator.
        registry: Backend registry passed to the orchestrator.

    Returns:
        Tuple of (RunRecord, LaunchResult).

    Raises:
        DiskrunError: Re-raised after the record is marked failed.
    """
    if request.name is None:
        request.name = default_vm_name(request.config)
    backend = request.backend.value if isinstance(request.backend, BackendId) else request.backend
    record = RunRecord(
        vm_name=request.name,
        backend=backend,
        disk_output=str(request.disk_output) if request.disk_output else None,
        status=RunStatus.PENDING.value,
    )
    session.add(record)
    record.mark_running()
    session.commit()
    logger.info("Created run record %d for '%s'", record.id, record.vm_name)

    try:
        result = launch(
            request,
            settings=settings,
            engine=engine,
            allocator=allocator,
            registry=registry,
        )
    except DiskrunError as e:
        record.mark_failed(error_type=e.code, message=str(e))
        session.commit()
        logger.error("Run %d failed: %s", record.id, e)
        raise
    except ValueError as e:
        record.mark_failed(error_type="invalid_request", message=str(e))
        session.commit()
        raise
    except BaseException as e:
        error_type = "interrupted" if isinstance(e, KeyboardInterrupt) else "internal_error"
        record.mark_failed(error_type=error_type, message=str(e) or type(e).__name__)
        session.commit()
        logger.error("Run %d aborted: %r", record.id, e)
        raise

    record.mark_succeeded(exit_code=result.exit_code, kernel=result.kernel)
    if result.relocation_error is not None:
        record.relocation_error = str(result.relocation_error)
    session.flush()
    logger.info("Run %d finished with exit code %s", record.id, result.exit_code)
    return record, result


def get_run(session: Session, run_id: int) -> RunRecord:
    """Get a run record by ID.

    Raises:
        RunNotFoundError: If the run is not found.
    """
    run = session.get(RunRecord, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def list_runs(
    session: Session,
    backend: BackendId | None = None,
    status: RunStatus | None = None,
    limit: int = 100,
) -> list[RunRecord]:
    """List run records, newest first, with optional filters.

    Args:
        session: Database session.
        backend: Filter by backend.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of RunRecord instances.
    """
    stmt = select(RunRecord)

    if backend is not None:
        stmt = stmt.where(RunRecord.backend == backend.value)
    if status is not None:
        stmt = stmt.where(RunRecord.status == status.value)

    stmt = stmt.order_by(RunRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


__all__ = [
    "RunNotFoundError",
    "get_run",
    "list_runs",
    "run_and_record",
]

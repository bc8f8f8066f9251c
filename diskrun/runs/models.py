"""Run history ORM models.

This module defines the RunRecord model storing one row per
build-and-run request.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from diskrun.db import Base
from diskrun.types import RunStatus


class RunRecord(Base):
    """ORM model for build-and-run records.

    Attributes:
        id: Primary key.
        vm_name: Display name of the VM.
        backend: Backend identifier.
        status: Run status (pending, running, succeeded, failed).
        requested_at: Timestamp when the run was requested.
        started_at: Timestamp when orchestration started.
        finished_at: Timestamp when the VM exited or the run failed.
        disk_output: Requested path for a saved copy of the disk.
        kernel: Kernel build embedded in the disk, if reported.
        exit_code: Hypervisor exit code.
        error_type: Error code if the run failed.
        error_message: Error message if the run failed.
        relocation_error: Message if saving the disk copy failed.
    """

    __tablename__ = "run_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vm_name: Mapped[str] = mapped_column(String(255), nullable=False)
    backend: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Outputs
    disk_output: Mapped[str | None] = mapped_column(String(500), nullable=True)
    kernel: Mapped[str | None] = mapped_column(String(100), nullable=True)
    exit_code: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    relocation_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_run_records_backend_status", "backend", "status"),)

    def __repr__(self) -> str:
        """Return string representation of RunRecord."""
        return (
            f"<RunRecord(id={self.id}, vm_name='{self.vm_name}', "
            f"backend='{self.backend}', status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this run as running."""
        self.status = RunStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self, exit_code: int | None = None, kernel: str | None = None) -> None:
        """Mark this run as succeeded.

        Args:
            exit_code: Hypervisor exit code.
            kernel: Kernel build embedded in the disk.
        """
        self.status = RunStatus.SUCCEEDED.value
        self.finished_at = datetime.now()
        self.exit_code = exit_code
        if kernel:
            self.kernel = kernel

    def mark_failed(self, error_type: str | None = None, message: str | None = None) -> None:
        """Mark this run as failed.

        Args:
            error_type: Error code.
            message: Error message details.
        """
        self.status = RunStatus.FAILED.value
        self.finished_at = datetime.now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def is_succeeded(self) -> bool:
        """Check if this run succeeded."""
        return self.status == RunStatus.SUCCEEDED.value

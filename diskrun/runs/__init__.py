"""Build-and-run orchestration.

This module handles:
- The orchestrator driving every backend through one sequence
- Building disks without launching them
- Persisted run history
"""

from diskrun.runs.orchestrator import (
    BuildResult,
    LaunchRequest,
    LaunchResult,
    build_only,
    check_backend,
    launch,
)
from diskrun.runs.service import RunNotFoundError, get_run, list_runs, run_and_record

__all__ = [
    "BuildResult",
    "LaunchRequest",
    "LaunchResult",
    "RunNotFoundError",
    "build_only",
    "check_backend",
    "get_run",
    "launch",
    "list_runs",
    "run_and_record",
]

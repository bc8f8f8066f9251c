"""Error taxonomy for diskrun.

Every failure the orchestrator surfaces is a DiskrunError subclass with
a stable ``code`` for programmatic handling and the orchestration
``step`` that failed.
"""

from diskrun.types import Step

# Stable error codes
BACKEND_UNAVAILABLE = "backend_unavailable"
NETWORK_EXHAUSTED = "network_exhausted"
BUILD_FAILED = "build_failed"
READER_CLOSE_FAILED = "reader_close_failed"
CONFIGURATION_FAILED = "configuration_failed"
START_FAILED = "start_failed"
RELOCATION_FAILED = "relocation_failed"


class DiskrunError(Exception):
    """Base error for diskrun operations."""

    default_code = "diskrun_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        step: Step | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.step = step

    def __str__(self) -> str:
        if self.step is None:
            return self.message
        return f"{self.step.value}: {self.message}"


class UnavailableBackendError(DiskrunError):
    """Backend tool or service missing, or wrong host operating system."""

    default_code = BACKEND_UNAVAILABLE


class NetworkExhaustedError(DiskrunError):
    """The address allocator has no addresses left."""

    default_code = NETWORK_EXHAUSTED


class BuildFailureError(DiskrunError):
    """Image construction, size negotiation or encoding failed."""

    default_code = BUILD_FAILED


class ReaderCloseError(DiskrunError):
    """The package reader failed to close."""

    default_code = READER_CLOSE_FAILED


class ConfigurationError(DiskrunError):
    """Backend configuration was rejected."""

    default_code = CONFIGURATION_FAILED


class StartFailureError(DiskrunError):
    """The virtualizer refused to launch."""

    default_code = START_FAILED


class RelocationError(DiskrunError):
    """Saving a copy of the built disk failed.

    Attributes:
        source: Temporary disk path.
        destination: Requested output path.
    """

    default_code = RELOCATION_FAILED

    def __init__(self, source: str, destination: str, reason: str) -> None:
        super().__init__(
            f"Failed to save disk to '{destination}': {reason}",
            step=Step.FINALIZE,
        )
        self.source = source
        self.destination = destination


__all__ = [
    "BACKEND_UNAVAILABLE",
    "BUILD_FAILED",
    "BuildFailureError",
    "CONFIGURATION_FAILED",
    "ConfigurationError",
    "DiskrunError",
    "NETWORK_EXHAUSTED",
    "NetworkExhaustedError",
    "READER_CLOSE_FAILED",
    "RELOCATION_FAILED",
    "ReaderCloseError",
    "RelocationError",
    "START_FAILED",
    "StartFailureError",
    "UnavailableBackendError",
]

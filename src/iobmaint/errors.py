"""Error taxonomy shared by the maintenance handlers.

Every abort path raises one of these so the CLI can turn it into a message,
a structured log record and a non-zero exit code in a single place.
"""
from __future__ import annotations

from pathlib import Path

from .exit_codes import ExitCode


class MaintenanceError(RuntimeError):
    """Base class for aborted maintenance operations."""

    rc: int = ExitCode.FAILURE


class UserDeclinedError(MaintenanceError):
    """Raised when the operator refuses a confirmation prompt."""

    def __init__(self, message: str = "Operation cancelled by the operator.") -> None:
        super().__init__(message)


class PreconditionError(MaintenanceError):
    """Raised when the container is not in a state that allows the operation."""


class ExternalOperationError(MaintenanceError):
    """Raised when a signal or an ioBroker command fails."""

    def __init__(self, message: str, *, log_path: Path | None = None) -> None:
        super().__init__(message)
        self.log_path = log_path


class InputError(MaintenanceError):
    """Raised for malformed arguments or invalid interactive selections."""


__all__ = [
    "ExternalOperationError",
    "InputError",
    "MaintenanceError",
    "PreconditionError",
    "UserDeclinedError",
]

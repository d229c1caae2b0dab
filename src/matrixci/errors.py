# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class MatrixCIError(Exception):
    """Base class for engine errors."""


class ConfigurationError(MatrixCIError):
    """Malformed workflow or matrix. The run is rejected before any job starts."""


class EventError(MatrixCIError):
    """Malformed incoming event. Reported, never retried."""


class CancellationError(MatrixCIError):
    """A run or job was superseded or cancelled."""


class GovernorConflict(MatrixCIError):
    """Two runs tried to own the same governor slot."""


@dataclass
class StepFailure(MatrixCIError):
    job: str
    step: str
    message: str
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        head = f"[{self.job}] step '{self.step}' failed"
        if self.exit_code is not None:
            head += f" (exit={self.exit_code})"
        return f"{head}: {self.message}"

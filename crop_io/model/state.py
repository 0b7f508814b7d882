"""Data model for export lifecycle and results."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

import attrs

from crop_io.errors import CropError


class ExportStatus(Enum):
    """Status of an export job."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """True for completed, failed and cancelled."""
        return self in (
            ExportStatus.COMPLETED,
            ExportStatus.FAILED,
            ExportStatus.CANCELLED,
        )


@attrs.frozen
class CropResult:
    """Outcome of a crop job: an output path or exactly one error.

    Attributes:
        output_path: Path of the exported file on success.
        error: The typed error on failure or cancellation.
    """

    output_path: Optional[Path] = None
    error: Optional[CropError] = None

    def __attrs_post_init__(self):
        """Check that exactly one of `output_path` and `error` is set."""
        if (self.output_path is None) == (self.error is None):
            raise ValueError("CropResult needs exactly one of output_path or error.")

    @classmethod
    def success(cls, output_path: Path) -> CropResult:
        """Create a successful result."""
        return cls(output_path=Path(output_path))

    @classmethod
    def failure(cls, error: CropError) -> CropResult:
        """Create a failed result."""
        return cls(error=error)

    @property
    def ok(self) -> bool:
        """True if the job produced an output file."""
        return self.error is None

    def unwrap(self) -> Path:
        """Return the output path or raise the error."""
        if self.error is not None:
            raise self.error
        return self.output_path


@attrs.define
class ExportState:
    """Observable state of an `ExportCoordinator`.

    Only the coordinator mutates this object. The status moves
    idle -> running -> completed | failed | cancelled -> idle. Once a job has been
    torn down, its terminal status remains available as `last_status`.

    Attributes:
        status: Current status.
        progress: Fraction in [0, 1] of the running or last job.
        result: Output path of the last successful job.
        error: Error of the last failed or cancelled job.
        last_status: Terminal status of the last job, if any.
    """

    status: ExportStatus = ExportStatus.IDLE
    progress: float = 0.0
    result: Optional[Path] = None
    error: Optional[CropError] = None
    last_status: Optional[ExportStatus] = None

    def start(self) -> None:
        """Enter the running state for a new job."""
        self.status = ExportStatus.RUNNING
        self.progress = 0.0
        self.result = None
        self.error = None

    def update_progress(self, value: float) -> float:
        """Record a progress sample, keeping the sequence non-decreasing.

        Returns:
            The recorded (clamped, monotonic) progress value.
        """
        value = min(max(float(value), 0.0), 1.0)
        self.progress = max(self.progress, value)
        return self.progress

    def finish(self, result: CropResult, status: ExportStatus) -> None:
        """Enter a terminal state."""
        self.status = status
        self.last_status = status
        if result.ok:
            self.result = result.output_path
            self.progress = 1.0
        else:
            self.error = result.error

    def reset(self) -> None:
        """Return to idle after teardown."""
        self.status = ExportStatus.IDLE

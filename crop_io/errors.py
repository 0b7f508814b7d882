"""Typed errors raised by crop jobs.

Every failure of a crop request is reported as exactly one `CropError` subclass.
Errors detected before the export starts (missing source, invalid rectangle,
unusable tracks) are raised without side effects. Errors from the export itself
wrap the originating exception in `ExportFailedError.underlying`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class CropErrorKind(Enum):
    """Kinds of crop failures."""

    FILE_NOT_FOUND = "file_not_found"
    INVALID_CROP_RECT = "invalid_crop_rect"
    VIDEO_TRACK_NOT_FOUND = "video_track_not_found"
    COMPOSITION_CREATION_FAILED = "composition_creation_failed"
    EXPORT_FAILED = "export_failed"
    CANCELLED = "cancelled"
    UNREADABLE_IMAGE = "unreadable_image"


class CropError(Exception):
    """Base class for all crop job errors."""

    kind: CropErrorKind


class SourceFileNotFoundError(CropError, FileNotFoundError):
    """The source path does not exist when the job starts."""

    kind = CropErrorKind.FILE_NOT_FOUND


class InvalidCropRectError(CropError, ValueError):
    """The crop rectangle is non-positive or does not intersect the frame."""

    kind = CropErrorKind.INVALID_CROP_RECT


class VideoTrackNotFoundError(CropError):
    """The source asset has no video track."""

    kind = CropErrorKind.VIDEO_TRACK_NOT_FOUND


class CompositionCreationError(CropError):
    """A composition track could not be allocated or populated."""

    kind = CropErrorKind.COMPOSITION_CREATION_FAILED


class ExportFailedError(CropError):
    """The export finished with a non-success status.

    Attributes:
        underlying: The exception reported by the export, if any.
    """

    kind = CropErrorKind.EXPORT_FAILED

    def __init__(self, message: str, underlying: Optional[BaseException] = None):
        super().__init__(message)
        self.underlying = underlying

    def __str__(self) -> str:
        message = super().__str__()
        if self.underlying is not None:
            return f"{message}: {self.underlying}"
        return message


class CropCancelledError(CropError):
    """The job was cancelled explicitly or superseded by a newer job."""

    kind = CropErrorKind.CANCELLED


class UnreadableImageError(CropError):
    """The source of an image crop is not an image PIL can open."""

    kind = CropErrorKind.UNREADABLE_IMAGE


class CompositorError(RuntimeError):
    """A frame could not be rendered.

    Raised from inside the per-frame step. It is fatal for the whole export and is
    surfaced to callers as the `underlying` error of an `ExportFailedError`.
    """

"""Inspection of source media files with PyAV."""

from __future__ import annotations

import logging
from fractions import Fraction
from pathlib import Path
from typing import Optional

import attrs
import av

from crop_io.errors import SourceFileNotFoundError, VideoTrackNotFoundError
from crop_io.transform.core import Orientation

logger = logging.getLogger(__name__)


@attrs.frozen
class SourceTrack:
    """A stream of a source file.

    Attributes:
        index: Stream index in the container.
        kind: "video" or "audio".
        codec: Codec name.
        time_base: Stream time base, or None if unknown.
        start: Start time in seconds.
        duration: Duration in seconds, or None if unknown.
        width: Coded frame width (video only).
        height: Coded frame height (video only).
        fps: Average frame rate (video only).
        orientation: Stored display orientation (video only).
    """

    index: int
    kind: str
    codec: Optional[str] = None
    time_base: Optional[Fraction] = None
    start: float = 0.0
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    orientation: Orientation = attrs.field(factory=Orientation)

    @property
    def size(self) -> tuple[int, int]:
        """Raw `(width, height)` of decoded frames."""
        return (self.width, self.height)

    @property
    def rotation(self) -> int:
        """Clockwise display rotation in degrees, ignoring mirroring."""
        m = self.orientation.matrix
        if m[0, 0] < 0 and m[1, 1] < 0:
            return 180
        if m[1, 0] > 0:
            return 90
        if m[1, 0] < 0:
            return 270
        return 0


@attrs.frozen
class MediaAsset:
    """An inspected source file.

    Attributes:
        path: Path to the file.
        format_name: Container format reported by FFmpeg.
        duration: Container duration in seconds, or None if unknown.
        tracks: Video and audio tracks in stream order.
    """

    path: Path
    format_name: str
    duration: Optional[float]
    tracks: tuple[SourceTrack, ...] = ()

    @property
    def video_tracks(self) -> list[SourceTrack]:
        """Video tracks in stream order."""
        return [t for t in self.tracks if t.kind == "video"]

    @property
    def audio_tracks(self) -> list[SourceTrack]:
        """Audio tracks in stream order."""
        return [t for t in self.tracks if t.kind == "audio"]

    @property
    def primary_video(self) -> SourceTrack:
        """The first video track.

        Raises:
            VideoTrackNotFoundError: If the file has no video track.
        """
        videos = self.video_tracks
        if not videos:
            raise VideoTrackNotFoundError(f"No video track found in {self.path}.")
        return videos[0]


def _seconds(value, time_base) -> Optional[float]:
    if value is None or time_base is None:
        return None
    return float(value * time_base)


def _read_rotation(container, stream) -> float:
    """Clockwise display rotation of a video stream in degrees.

    Older files carry it as a "rotate" metadata tag. Newer FFmpeg builds expose it
    as display matrix side data, which PyAV reports on decoded frames as a
    counter-clockwise angle.
    """
    tag = stream.metadata.get("rotate")
    if tag is not None:
        return float(tag) % 360

    try:
        frame = next(container.decode(stream), None)
    except av.error.FFmpegError as exc:
        logger.debug("Could not decode a frame of stream %d: %s", stream.index, exc)
        return 0.0
    if frame is None:
        return 0.0
    return -float(getattr(frame, "rotation", 0) or 0) % 360


def inspect_asset(path: str | Path) -> MediaAsset:
    """Read the tracks of a media file.

    Args:
        path: Path to the source file.

    Returns:
        The inspected `MediaAsset`. Streams other than video and audio are ignored.

    Raises:
        SourceFileNotFoundError: If the file does not exist.
        VideoTrackNotFoundError: If the file cannot be opened as media.
    """
    path = Path(path)
    if not path.exists():
        raise SourceFileNotFoundError(f"Source file not found: {path}")

    try:
        container = av.open(path.as_posix())
    except av.error.FFmpegError as exc:
        raise VideoTrackNotFoundError(
            f"Could not read media tracks from {path}: {exc}"
        ) from exc

    with container:
        format_name = container.format.name
        duration = None
        if container.duration is not None:
            duration = container.duration / av.time_base

        tracks = []
        for stream in container.streams:
            kind = stream.type
            if kind not in ("video", "audio"):
                continue
            codec = stream.codec_context.name if stream.codec_context else None
            time_base = stream.time_base
            track = dict(
                index=stream.index,
                kind=kind,
                codec=codec,
                time_base=time_base,
                start=_seconds(stream.start_time, time_base) or 0.0,
                duration=_seconds(stream.duration, time_base),
            )
            if kind == "video":
                rate = stream.average_rate or stream.guessed_rate
                degrees = _read_rotation(container, stream)
                track.update(
                    width=stream.codec_context.width,
                    height=stream.codec_context.height,
                    fps=float(rate) if rate else None,
                    orientation=Orientation.from_rotation(degrees),
                )
            tracks.append(SourceTrack(**track))

    asset = MediaAsset(
        path=path,
        format_name=format_name,
        duration=duration,
        tracks=tuple(tracks),
    )
    logger.debug(
        "Inspected %s: %d video, %d audio tracks, duration=%s",
        path,
        len(asset.video_tracks),
        len(asset.audio_tracks),
        duration,
    )
    return asset

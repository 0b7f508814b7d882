"""Data model for compositions and composition plans.

A `Composition` is a virtual timeline made of tracks taken from a source asset.
A `CompositionPlan` bundles a composition with the geometry of the crop and is
the only input the export needs besides the source file.
"""

from __future__ import annotations

from typing import Optional

import attrs
import numpy as np

from crop_io.errors import CompositionCreationError
from crop_io.model.job import CropRect
from crop_io.transform.core import Orientation, TransformPlan

TRACK_KINDS = ("video", "audio")


@attrs.frozen
class TimeRange:
    """A range of media time in seconds.

    Attributes:
        start: Start time.
        duration: Length of the range.
    """

    start: float = attrs.field(converter=float)
    duration: float = attrs.field(converter=float)

    @property
    def end(self) -> float:
        """End time (exclusive)."""
        return self.start + self.duration

    def contains(self, t: float) -> bool:
        """Return True if `t` falls inside the range."""
        return self.start <= t < self.end


@attrs.define
class CompositionTrack:
    """A track of a composition.

    Attributes:
        track_id: Synthetic identifier, unique within the composition.
        kind: "video" or "audio".
        source_index: Index of the source stream inserted into this track, or None
            while the track is still empty.
        time_range: Range of the source stream that was inserted.
        offset: Composition time at which the inserted range starts.
    """

    track_id: int
    kind: str = attrs.field(validator=attrs.validators.in_(TRACK_KINDS))
    source_index: Optional[int] = None
    time_range: Optional[TimeRange] = None
    offset: float = 0.0

    @property
    def is_empty(self) -> bool:
        """True if nothing has been inserted into the track yet."""
        return self.source_index is None


@attrs.define
class Composition:
    """A time-ranged, multi-track composition.

    Attributes:
        tracks: Tracks in insertion order.
    """

    tracks: list[CompositionTrack] = attrs.field(factory=list)

    @property
    def video_tracks(self) -> list[CompositionTrack]:
        """Video tracks in insertion order."""
        return [t for t in self.tracks if t.kind == "video"]

    @property
    def audio_tracks(self) -> list[CompositionTrack]:
        """Audio tracks in insertion order."""
        return [t for t in self.tracks if t.kind == "audio"]

    @property
    def time_range(self) -> TimeRange:
        """Range spanned by all populated tracks."""
        populated = [t for t in self.tracks if not t.is_empty]
        if not populated:
            return TimeRange(0, 0)
        end = max(t.offset + t.time_range.duration for t in populated)
        return TimeRange(0, end)

    def add_track(self, kind: str) -> CompositionTrack:
        """Allocate a new empty track.

        Raises:
            CompositionCreationError: If `kind` is not a supported track kind.
        """
        if kind not in TRACK_KINDS:
            raise CompositionCreationError(f"Unsupported track kind: {kind}")
        track_id = max((t.track_id for t in self.tracks), default=0) + 1
        track = CompositionTrack(track_id=track_id, kind=kind)
        self.tracks.append(track)
        return track

    def insert_time_range(
        self,
        track: CompositionTrack,
        time_range: TimeRange,
        source_index: int,
        at: float = 0.0,
    ) -> None:
        """Insert a range of a source stream into a track.

        Args:
            track: Track allocated with `add_track`.
            time_range: Range of the source stream to insert.
            source_index: Index of the source stream.
            at: Composition time at which to insert.

        Raises:
            CompositionCreationError: If the track does not belong to this
                composition, is already populated, or the range cannot be placed.
        """
        if track not in self.tracks:
            raise CompositionCreationError(
                f"Track {track.track_id} is not part of this composition."
            )
        if not track.is_empty:
            raise CompositionCreationError(
                f"Track {track.track_id} already holds stream {track.source_index}."
            )
        if not np.isfinite(time_range.duration) or time_range.duration <= 0:
            raise CompositionCreationError(
                f"Cannot insert an empty time range into track {track.track_id}."
            )
        if at < 0:
            raise CompositionCreationError(f"Cannot insert at negative time {at}.")
        track.source_index = source_index
        track.time_range = time_range
        track.offset = at


def _check_plan(instance: CompositionPlan, attribute, value):
    width, height = instance.render_size
    rect = instance.crop_rect
    if (width, height) != (rect.width, rect.height):
        raise ValueError(
            f"Render size {width}x{height} does not match the crop size "
            f"{rect.width:g}x{rect.height:g}."
        )
    bounds = CropRect(0, 0, instance.extent[0], instance.extent[1])
    if not bounds.contains(rect):
        raise ValueError(
            f"Crop rect {rect.to_tuple()} lies outside the frame extent "
            f"{instance.extent}."
        )


@attrs.frozen(eq=False)
class CompositionPlan:
    """Everything the export needs to render a crop.

    Plans are built once per job by `crop_io.io.composition.build_plan` and never
    change afterwards.

    Attributes:
        video_track_ids: Composition video track ids. The first one is rendered.
        audio_track_ids: Composition audio track ids, passed through unchanged.
        video_stream_indices: Source stream index of each video track.
        audio_stream_indices: Source stream index of each audio track.
        time_range: Total range of the composition.
        source_size: Raw `(width, height)` of the rendered video track.
        orientation: Stored orientation of the rendered video track.
        angle: User rotation in radians.
        frame_transform: Render-space transform from raw pixels to output pixels.
        extent: `(width, height)` of the upright, rotated frame.
        crop_rect: Crop rectangle in render space.
        render_size: Output `(width, height)`.
        frame_rate: Nominal frame rate of the rendered video track, used as the
            frame rate of the output stream.
    """

    video_track_ids: tuple[int, ...]
    audio_track_ids: tuple[int, ...]
    video_stream_indices: tuple[int, ...]
    audio_stream_indices: tuple[int, ...]
    time_range: TimeRange
    source_size: tuple[int, int]
    orientation: Orientation
    angle: float
    frame_transform: np.ndarray
    extent: tuple[float, float]
    crop_rect: CropRect
    render_size: tuple[int, int] = attrs.field(validator=_check_plan)
    frame_rate: Optional[float] = None

    @classmethod
    def from_parts(
        cls,
        composition: Composition,
        transform: TransformPlan,
        orientation: Orientation,
        angle: float,
        frame_rate: Optional[float] = None,
    ) -> CompositionPlan:
        """Assemble a plan from a composition and a transform plan."""
        videos = composition.video_tracks
        audios = composition.audio_tracks
        return cls(
            video_track_ids=tuple(t.track_id for t in videos),
            audio_track_ids=tuple(t.track_id for t in audios),
            video_stream_indices=tuple(t.source_index for t in videos),
            audio_stream_indices=tuple(t.source_index for t in audios),
            time_range=composition.time_range,
            source_size=transform.source_size,
            orientation=orientation,
            angle=angle,
            frame_transform=transform.frame_transform,
            extent=transform.extent,
            crop_rect=transform.crop_rect,
            render_size=transform.render_size,
            frame_rate=frame_rate,
        )

    @property
    def primary_stream_index(self) -> int:
        """Source stream index of the rendered video track."""
        return self.video_stream_indices[0]

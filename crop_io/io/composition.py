"""Build compositions and composition plans from inspected assets."""

from __future__ import annotations

import logging
import math
import warnings

from crop_io.errors import CompositionCreationError, VideoTrackNotFoundError
from crop_io.io.asset import MediaAsset, SourceTrack
from crop_io.model.composition import Composition, CompositionPlan, TimeRange
from crop_io.model.job import CropJob
from crop_io.transform.core import plan_transform

logger = logging.getLogger(__name__)


def _track_range(track: SourceTrack, asset: MediaAsset) -> TimeRange:
    """Full time range of a source track.

    Falls back to the container duration when the stream does not report one.
    """
    if track.time_base is None:
        raise CompositionCreationError(
            f"Stream {track.index} of {asset.path} has an unknown time base."
        )
    duration = track.duration
    if duration is None or duration <= 0:
        duration = asset.duration
    if duration is None or not math.isfinite(duration) or duration <= 0:
        raise CompositionCreationError(
            f"Stream {track.index} of {asset.path} has no usable duration."
        )
    return TimeRange(track.start, duration)


def build_composition(asset: MediaAsset) -> Composition:
    """Create a composition holding every video and audio track of an asset.

    Each source track is inserted over its full range at time zero into a new
    composition track of the same kind. Synthetic track ids follow stream order.

    Args:
        asset: The inspected source.

    Returns:
        The `Composition`.

    Raises:
        VideoTrackNotFoundError: If the asset has no video track.
        CompositionCreationError: If a track cannot be inserted.
    """
    if not asset.video_tracks:
        raise VideoTrackNotFoundError(f"No video track found in {asset.path}.")

    composition = Composition()
    for source in asset.video_tracks + asset.audio_tracks:
        track = composition.add_track(source.kind)
        composition.insert_time_range(
            track, _track_range(source, asset), source_index=source.index, at=0.0
        )
    return composition


def build_plan(job: CropJob, asset: MediaAsset, alignment: int = 2) -> CompositionPlan:
    """Plan a crop job against an inspected asset.

    Only the first video track is rendered. Additional video tracks are kept in
    the composition but are not part of the output.

    Args:
        job: The crop request.
        asset: The inspected source of the job.
        alignment: Pixel alignment of the output size.

    Returns:
        The `CompositionPlan`.

    Raises:
        VideoTrackNotFoundError: If the asset has no video track.
        CompositionCreationError: If a track cannot be inserted.
        InvalidCropRectError: If the rectangle does not overlap the frame.
    """
    composition = build_composition(asset)
    video = asset.primary_video
    if len(asset.video_tracks) > 1:
        warnings.warn(
            f"{asset.path} has {len(asset.video_tracks)} video tracks. Only the "
            f"first one (stream {video.index}) will be cropped and exported.",
            UserWarning,
            stacklevel=2,
        )

    transform = plan_transform(
        video.size,
        job.rect,
        angle=job.angle,
        orientation=video.orientation,
        alignment=alignment,
    )
    logger.debug(
        "Planned crop of %s: extent=%s crop=%s render_size=%s",
        asset.path,
        transform.extent,
        transform.crop_rect.to_tuple(),
        transform.render_size,
    )
    return CompositionPlan.from_parts(
        composition,
        transform,
        orientation=video.orientation,
        angle=job.angle,
        frame_rate=video.fps,
    )

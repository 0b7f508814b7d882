"""Export of cropped videos with PyAV.

An `ExportSession` decodes the rendered video track of a source file, passes each
frame through a `FrameCompositor`, encodes the result and copies the packets of
every audio track unchanged into the output container.
"""

from __future__ import annotations

import logging
import tempfile
import threading
import uuid
from fractions import Fraction
from pathlib import Path
from typing import Optional

import attrs
import av

from crop_io.model.composition import CompositionPlan
from crop_io.model.state import ExportStatus
from crop_io.transform.frame import QUALITY_TO_RESAMPLE, FrameCompositor

logger = logging.getLogger(__name__)

# Export preset -> (x264 constant rate factor, x264 preset)
EXPORT_PRESETS = {
    "highest": (17, "slow"),
    "medium": (23, "medium"),
    "low": (28, "veryfast"),
}

# Container format -> file extension
CONTAINER_EXTENSIONS = {
    "mov": "mov",
    "mp4": "mp4",
    "matroska": "mkv",
}

# Fallback frame rate when the source reports none
DEFAULT_FRAME_RATE = 30


def _output_rate(plan: CompositionPlan) -> Fraction:
    """Nominal output frame rate, recovering NTSC rates such as 30000/1001."""
    if not plan.frame_rate:
        return Fraction(DEFAULT_FRAME_RATE)
    return Fraction(plan.frame_rate).limit_denominator(1001)


@attrs.define
class ExportSettings:
    """Settings of an export.

    Attributes:
        preset: Quality preset. One of "highest", "medium" or "low". Defaults to
            "highest".
        container: Output container format. Defaults to "mov" (QuickTime).
        codec: Video codec. Defaults to "libx264".
        pixel_format: Output pixel format. Defaults to "yuv420p".
        pixel_alignment: The output width and height are rounded down to a multiple
            of this. Defaults to 2, which yuv420p requires.
        quality: Resampling used for rotated frames. One of "nearest", "bilinear"
            or "bicubic". Defaults to "bilinear".
        temp_dir: Directory for generated output files. Defaults to the system
            temporary directory.
        progress_interval: Seconds between progress samples. Defaults to 0.2.
    """

    preset: str = attrs.field(
        default="highest", validator=attrs.validators.in_(EXPORT_PRESETS)
    )
    container: str = attrs.field(
        default="mov", validator=attrs.validators.in_(CONTAINER_EXTENSIONS)
    )
    codec: str = "libx264"
    pixel_format: str = "yuv420p"
    pixel_alignment: int = attrs.field(default=2, validator=attrs.validators.ge(1))
    quality: str = attrs.field(
        default="bilinear", validator=attrs.validators.in_(QUALITY_TO_RESAMPLE)
    )
    temp_dir: Optional[Path] = attrs.field(
        default=None, converter=attrs.converters.optional(Path)
    )
    progress_interval: float = attrs.field(default=0.2, validator=attrs.validators.gt(0))

    @property
    def crf(self) -> int:
        """Constant rate factor of the preset."""
        return EXPORT_PRESETS[self.preset][0]

    @property
    def encoder_preset(self) -> str:
        """x264 speed preset of the preset."""
        return EXPORT_PRESETS[self.preset][1]

    @property
    def extension(self) -> str:
        """File extension of the output container."""
        return CONTAINER_EXTENSIONS[self.container]

    def build_codec_options(self) -> dict[str, str]:
        """Build the encoder options."""
        if self.codec == "libx264":
            return {"crf": str(self.crf), "preset": self.encoder_preset}
        return {}

    def make_output_path(self) -> Path:
        """Generate a new, unique output path in the temporary directory."""
        directory = self.temp_dir or Path(tempfile.gettempdir())
        return directory / f"{uuid.uuid4()}_cropped.{self.extension}"


class ExportSession:
    """A single export of a composition plan.

    `export` runs synchronously and is meant to be called from a worker thread.
    `progress`, `status` and `error` may be read and `cancel_export` called from any
    other thread while it runs.

    Args:
        source: Path to the source file.
        plan: The composition plan of the job.
        output_path: Path of the file to write.
        settings: Export settings. Defaults to `ExportSettings()`.
    """

    def __init__(
        self,
        source: str | Path,
        plan: CompositionPlan,
        output_path: str | Path,
        settings: Optional[ExportSettings] = None,
    ):
        self.source = Path(source)
        self.plan = plan
        self.output_path = Path(output_path)
        self.settings = settings if settings is not None else ExportSettings()
        self.status = ExportStatus.IDLE
        self.error: Optional[BaseException] = None
        self.frames_written = 0
        self._progress = 0.0
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def progress(self) -> float:
        """Fraction of the composition exported so far, in [0, 1]."""
        with self._lock:
            return self._progress

    def _set_progress(self, value: float):
        value = min(max(value, 0.0), 1.0)
        with self._lock:
            if value > self._progress:
                self._progress = value

    @property
    def is_cancelled(self) -> bool:
        """True once `cancel_export` has been called."""
        return self._cancelled.is_set()

    def cancel_export(self):
        """Ask the export to stop. Safe to call more than once and from any thread."""
        self._cancelled.set()

    def export(self) -> ExportStatus:
        """Run the export to completion, failure or cancellation.

        Errors are not raised. They are recorded in `error` and reflected in
        `status`.

        Returns:
            The final status.
        """
        if self.status is not ExportStatus.IDLE:
            raise RuntimeError("An ExportSession can only be exported once.")
        self.status = ExportStatus.RUNNING
        logger.debug("Exporting %s to %s", self.source, self.output_path)
        try:
            completed = self._run()
        except Exception as exc:
            logger.debug("Export of %s failed", self.source, exc_info=True)
            self.error = exc
            self.status = ExportStatus.FAILED
        else:
            if completed:
                self._set_progress(1.0)
                self.status = ExportStatus.COMPLETED
            else:
                self.status = ExportStatus.CANCELLED
        logger.debug(
            "Export of %s finished: %s (%d frames)",
            self.source,
            self.status.value,
            self.frames_written,
        )
        return self.status

    def _frame_progress(self, frame, start: float, duration: float, total: int):
        if frame.time is not None and duration > 0:
            return (frame.time - start) / duration
        if total:
            return self.frames_written / total
        return 0.0

    def _run(self) -> bool:
        """Demux, render, encode and mux. Returns False if cancelled."""
        plan = self.plan
        compositor = FrameCompositor(plan, quality=self.settings.quality)
        width, height = plan.render_size
        start = plan.time_range.start
        duration = plan.time_range.duration

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with av.open(self.source.as_posix()) as in_container, av.open(
            self.output_path.as_posix(), "w", format=self.settings.container
        ) as out_container:
            in_video = in_container.streams[plan.primary_stream_index]
            in_video.thread_type = "AUTO"
            total = in_video.frames

            out_video = out_container.add_stream(
                self.settings.codec,
                rate=_output_rate(plan),
                options=self.settings.build_codec_options(),
            )
            out_video.width = width
            out_video.height = height
            out_video.pix_fmt = self.settings.pixel_format
            # Frames keep their source timestamps.
            out_video.time_base = in_video.time_base
            out_video.codec_context.time_base = in_video.time_base

            audio_streams = {}
            for index in plan.audio_stream_indices:
                in_audio = in_container.streams[index]
                audio_streams[index] = out_container.add_stream_from_template(in_audio)

            inputs = [in_video] + [in_container.streams[i] for i in audio_streams]
            for packet in in_container.demux(*inputs):
                if self._cancelled.is_set():
                    return False

                if packet.stream.index in audio_streams:
                    # Flush packets carry no data.
                    if packet.dts is None:
                        continue
                    packet.stream = audio_streams[packet.stream.index]
                    out_container.mux(packet)
                    continue

                for frame in packet.decode():
                    out_frame = compositor.render(frame)
                    out_frame.pts = frame.pts
                    out_frame.time_base = frame.time_base
                    out_container.mux(out_video.encode(out_frame))
                    self.frames_written += 1
                    self._set_progress(
                        self._frame_progress(frame, start, duration, total)
                    )

            if self._cancelled.is_set():
                return False

            # Flush the encoder.
            out_container.mux(out_video.encode(None))

        return True

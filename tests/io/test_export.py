"""Tests for the PyAV export session."""

from fractions import Fraction
from pathlib import Path

import attrs
import av
import numpy as np
import pytest

from crop_io.errors import CompositorError
from crop_io.io.asset import inspect_asset
from crop_io.io.composition import build_plan
from crop_io.io.export import (
    DEFAULT_FRAME_RATE,
    EXPORT_PRESETS,
    ExportSession,
    ExportSettings,
    _output_rate,
)
from crop_io.model.job import CropJob, CropRect
from crop_io.model.state import ExportStatus


def _plan(path, rect=CropRect(0, 0, 160, 120), angle=0.0):
    job = CropJob(source=path, rect=rect, angle=angle)
    return build_plan(job, inspect_asset(path))


def _frame_times(path):
    with av.open(path.as_posix()) as container:
        return [frame.time for frame in container.decode(video=0)]


class TestExportSettings:
    """Tests for ExportSettings."""

    def test_defaults(self):
        settings = ExportSettings()
        assert settings.preset == "highest"
        assert settings.container == "mov"
        assert settings.codec == "libx264"
        assert settings.pixel_format == "yuv420p"
        assert settings.pixel_alignment == 2
        assert settings.progress_interval == 0.2
        assert settings.temp_dir is None

    @pytest.mark.parametrize("preset", sorted(EXPORT_PRESETS))
    def test_presets(self, preset):
        settings = ExportSettings(preset=preset)
        assert (settings.crf, settings.encoder_preset) == EXPORT_PRESETS[preset]
        options = settings.build_codec_options()
        assert options == {
            "crf": str(EXPORT_PRESETS[preset][0]),
            "preset": EXPORT_PRESETS[preset][1],
        }

    def test_highest_has_lowest_crf(self):
        assert EXPORT_PRESETS["highest"][0] < EXPORT_PRESETS["medium"][0]
        assert EXPORT_PRESETS["medium"][0] < EXPORT_PRESETS["low"][0]

    def test_other_codec_has_no_options(self):
        assert ExportSettings(codec="mpeg4").build_codec_options() == {}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"preset": "ultra"},
            {"container": "avi"},
            {"quality": "lanczos"},
            {"pixel_alignment": 0},
            {"progress_interval": 0},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ExportSettings(**kwargs)

    def test_make_output_path(self, tmp_path):
        settings = ExportSettings(temp_dir=tmp_path)
        first = settings.make_output_path()
        second = settings.make_output_path()
        assert first.parent == tmp_path
        assert first.name.endswith("_cropped.mov")
        assert first != second

    def test_extension(self):
        assert ExportSettings(container="mp4").extension == "mp4"
        assert ExportSettings(container="matroska").extension == "mkv"


class TestExportSession:
    """Tests for ExportSession."""

    def test_export(self, small_video_path, tmp_path):
        plan = _plan(small_video_path)
        output = tmp_path / "out.mov"
        session = ExportSession(small_video_path, plan, output)
        assert session.status is ExportStatus.IDLE
        assert session.progress == 0.0

        assert session.export() is ExportStatus.COMPLETED
        assert session.status is ExportStatus.COMPLETED
        assert session.error is None
        assert session.progress == 1.0
        assert session.frames_written == 10

        with av.open(output.as_posix()) as container:
            assert len(container.streams.video) == 1
            assert len(container.streams.audio) == 1
            video = container.streams.video[0]
            assert (video.codec_context.width, video.codec_context.height) == (
                160,
                120,
            )
            assert container.streams.audio[0].codec_context.name == "aac"

    def test_export_keeps_frame_times(self, offset_video_path, tmp_path):
        output = tmp_path / "out.mov"
        session = ExportSession(offset_video_path, _plan(offset_video_path), output)
        assert session.export() is ExportStatus.COMPLETED

        source_times = _frame_times(offset_video_path)
        output_times = _frame_times(output)
        assert source_times[0] == pytest.approx(1.0, abs=0.01)
        assert len(output_times) == len(source_times)
        np.testing.assert_allclose(output_times, source_times, atol=0.01)

    def test_output_rate(self, small_video_path):
        plan = _plan(small_video_path)
        assert _output_rate(plan) == 10
        assert _output_rate(attrs.evolve(plan, frame_rate=30000 / 1001)) == Fraction(
            30000, 1001
        )
        assert _output_rate(attrs.evolve(plan, frame_rate=None)) == DEFAULT_FRAME_RATE

    def test_export_without_audio(self, silent_video_path, tmp_path):
        plan = _plan(silent_video_path)
        output = tmp_path / "out.mov"
        session = ExportSession(silent_video_path, plan, output)
        assert session.export() is ExportStatus.COMPLETED
        with av.open(output.as_posix()) as container:
            assert len(container.streams.video) == 1
            assert len(container.streams.audio) == 0

    def test_export_mp4(self, small_video_path, tmp_path):
        settings = ExportSettings(container="mp4", preset="low")
        output = tmp_path / "out.mp4"
        session = ExportSession(small_video_path, _plan(small_video_path), output, settings)
        assert session.export() is ExportStatus.COMPLETED
        with av.open(output.as_posix()) as container:
            assert "mp4" in container.format.name

    def test_export_multiple_video_tracks(self, two_video_tracks_path, tmp_path):
        with pytest.warns(UserWarning):
            plan = _plan(two_video_tracks_path)
        output = tmp_path / "out.mov"
        session = ExportSession(two_video_tracks_path, plan, output)
        assert session.export() is ExportStatus.COMPLETED
        with av.open(output.as_posix()) as container:
            assert len(container.streams.video) == 1
            assert len(container.streams.audio) == 1

    def test_cancel_before_export(self, small_video_path, tmp_path):
        session = ExportSession(
            small_video_path, _plan(small_video_path), tmp_path / "out.mov"
        )
        session.cancel_export()
        session.cancel_export()
        assert session.is_cancelled
        assert session.export() is ExportStatus.CANCELLED
        assert session.error is None
        assert session.frames_written == 0

    def test_compositor_failure(self, small_video_path, tmp_path):
        plan = attrs.evolve(_plan(small_video_path), source_size=(100, 100))
        session = ExportSession(small_video_path, plan, tmp_path / "out.mov")
        assert session.export() is ExportStatus.FAILED
        assert isinstance(session.error, CompositorError)

    def test_missing_source_fails(self, small_video_path, tmp_path):
        plan = _plan(small_video_path)
        session = ExportSession(tmp_path / "missing.mov", plan, tmp_path / "out.mov")
        assert session.export() is ExportStatus.FAILED
        assert isinstance(session.error, av.error.FFmpegError)

    def test_export_only_once(self, small_video_path, tmp_path):
        session = ExportSession(
            small_video_path, _plan(small_video_path), tmp_path / "out.mov"
        )
        session.export()
        with pytest.raises(RuntimeError):
            session.export()

    def test_creates_output_directory(self, small_video_path, tmp_path):
        output = tmp_path / "nested" / "dir" / "out.mov"
        session = ExportSession(small_video_path, _plan(small_video_path), output)
        assert session.export() is ExportStatus.COMPLETED
        assert Path(output).exists()

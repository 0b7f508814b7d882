"""Tests for per-frame compositing."""

import math

import av
import numpy as np
import pytest

from crop_io.errors import CompositorError
from crop_io.model.job import CropRect
from crop_io.transform.core import Orientation, plan_transform
from crop_io.transform.frame import (
    QUALITY_TO_RESAMPLE,
    FrameCompositor,
    RenderContext,
    _from_pil_result,
    _to_pil_compatible,
    to_image_space,
)


def _gradient(width=8, height=6, channels=3):
    values = np.arange(width * height * channels, dtype=np.uint8)
    return values.reshape(height, width, channels)


def test_quality_to_resample():
    assert set(QUALITY_TO_RESAMPLE) == {"nearest", "bilinear", "bicubic"}


def test_pil_compatible_roundtrip():
    frame = np.zeros((4, 5, 1), dtype=np.uint8)
    squeezed, was_squeezed = _to_pil_compatible(frame)
    assert squeezed.shape == (4, 5)
    assert was_squeezed
    assert _from_pil_result(squeezed, was_squeezed).shape == (4, 5, 1)

    rgb = np.zeros((4, 5, 3), dtype=np.uint8)
    same, was_squeezed = _to_pil_compatible(rgb)
    assert same is rgb
    assert not was_squeezed


def test_to_image_space_for_translation():
    plan = plan_transform((1920, 1080), CropRect(480, 270, 960, 540))
    matrix = to_image_space(plan.frame_transform, 1080, 540)
    np.testing.assert_array_equal(matrix, [[1, 0, -480], [0, 1, -270], [0, 0, 1]])


class TestRenderContext:
    """Tests for RenderContext."""

    def test_translation_uses_crop_box(self):
        plan = plan_transform((1920, 1080), CropRect(480, 270, 960, 540))
        context = RenderContext.from_plan(plan)
        assert context.size == (960, 540)
        assert context.crop_box == (480, 270, 1440, 810)

    def test_rotation_has_no_crop_box(self):
        plan = plan_transform((8, 6), CropRect(0, 0, 6, 8), angle=math.pi / 2)
        context = RenderContext.from_plan(plan)
        assert context.crop_box is None
        assert context.size == (6, 8)
        assert len(context.coefficients) == 6

    def test_quality(self):
        plan = plan_transform((8, 6), CropRect(0, 0, 8, 6))
        context = RenderContext.from_plan(plan, quality="bicubic")
        assert context.resample == QUALITY_TO_RESAMPLE["bicubic"]


class TestFrameCompositor:
    """Tests for FrameCompositor."""

    def test_crop_matches_slice(self):
        image = _gradient(8, 6)
        plan = plan_transform((8, 6), CropRect(2, 1, 4, 4))
        out = FrameCompositor(plan).render_array(image)
        assert out.shape == (4, 4, 3)
        np.testing.assert_array_equal(out, image[1:5, 2:6])

    def test_output_is_a_copy(self):
        image = _gradient(8, 6)
        plan = plan_transform((8, 6), CropRect(2, 2, 4, 2))
        out = FrameCompositor(plan).render_array(image)
        out[:] = 0
        assert image[2:4, 2:6].any()

    def test_quarter_turn_is_clockwise(self):
        image = _gradient(8, 6)
        plan = plan_transform((8, 6), CropRect(0, 0, 6, 8), angle=math.pi / 2)
        out = FrameCompositor(plan, quality="nearest").render_array(image)
        np.testing.assert_array_equal(out, np.rot90(image, k=-1))

    def test_quarter_turn_then_crop(self):
        image = _gradient(8, 6)
        plan = plan_transform((8, 6), CropRect(2, 2, 4, 4), angle=math.pi / 2)
        out = FrameCompositor(plan, quality="nearest").render_array(image)
        np.testing.assert_array_equal(out, np.rot90(image, k=-1)[2:6, 2:6])

    def test_half_turn(self):
        image = _gradient(8, 6)
        plan = plan_transform((8, 6), CropRect(0, 0, 8, 6), angle=math.pi)
        out = FrameCompositor(plan, quality="nearest").render_array(image)
        np.testing.assert_array_equal(out, np.rot90(image, k=2))

    def test_stored_orientation_is_undone(self):
        image = _gradient(8, 6)
        plan = plan_transform(
            (8, 6), CropRect(0, 0, 6, 8), orientation=Orientation.from_rotation(90)
        )
        out = FrameCompositor(plan, quality="nearest").render_array(image)
        np.testing.assert_array_equal(out, np.rot90(image, k=-1))

    def test_mirrored_orientation(self):
        image = _gradient(8, 6)
        plan = plan_transform(
            (8, 6), CropRect(0, 0, 8, 6), orientation=Orientation.from_exif(2)
        )
        out = FrameCompositor(plan, quality="nearest").render_array(image)
        np.testing.assert_array_equal(out, image[:, ::-1])

    def test_grayscale_with_channel_axis(self):
        image = _gradient(8, 6, channels=1)
        plan = plan_transform((8, 6), CropRect(0, 0, 6, 8), angle=math.pi / 2)
        out = FrameCompositor(plan, quality="nearest").render_array(image)
        assert out.shape == (8, 6, 1)
        np.testing.assert_array_equal(out, np.rot90(image, k=-1))

    def test_arbitrary_angle_fills_corners(self):
        image = np.full((40, 40, 3), 200, dtype=np.uint8)
        plan = plan_transform(
            (40, 40), CropRect(0, 0, 56, 56), angle=math.radians(45), alignment=1
        )
        out = FrameCompositor(plan).render_array(image)
        assert out.shape[:2] == (plan.render_size[1], plan.render_size[0])
        assert out[0, 0].tolist() == [0, 0, 0]
        center = out[out.shape[0] // 2, out.shape[1] // 2]
        assert center.tolist() == [200, 200, 200]

    def test_missing_plan(self):
        with pytest.raises(CompositorError):
            FrameCompositor(None)

    def test_missing_frame(self):
        plan = plan_transform((8, 6), CropRect(0, 0, 4, 4))
        compositor = FrameCompositor(plan)
        with pytest.raises(CompositorError):
            compositor.render_array(None)
        with pytest.raises(CompositorError):
            compositor.render(None)

    def test_wrong_frame_size(self):
        plan = plan_transform((8, 6), CropRect(0, 0, 4, 4))
        with pytest.raises(CompositorError, match="expected 8x6"):
            FrameCompositor(plan).render_array(np.zeros((10, 10, 3), np.uint8))

    def test_render_video_frame(self):
        image = _gradient(8, 6)
        plan = plan_transform((8, 6), CropRect(2, 2, 4, 2))
        frame = av.VideoFrame.from_ndarray(image, format="rgb24")
        out = FrameCompositor(plan).render(frame)
        assert (out.width, out.height) == (4, 2)
        np.testing.assert_array_equal(out.to_ndarray(format="rgb24"), image[2:4, 2:6])

"""Per-frame compositing using PIL.

The compositor turns one decoded source frame into one output frame of exactly
the planned render size. Normalizing the orientation, rotating by `2π - angle`,
cropping to the flipped rectangle and re-anchoring at the origin are all folded
into the plan's frame transform, so each frame is resampled once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Union

import attrs
import av
import numpy as np
from PIL import Image

from crop_io.errors import CompositorError
from crop_io.transform.core import _clean, flip_y_matrix

if TYPE_CHECKING:
    from crop_io.model.composition import CompositionPlan
    from crop_io.transform.core import TransformPlan

    Plan = Union[CompositionPlan, TransformPlan]

# Map quality string to PIL resampling filter
QUALITY_TO_RESAMPLE = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
}


def _to_pil_compatible(frame: np.ndarray) -> tuple[np.ndarray, bool]:
    """Convert frame to PIL-compatible format.

    PIL requires grayscale images to have shape (H, W), not (H, W, 1).

    Args:
        frame: Input frame array.

    Returns:
        Tuple of (pil_compatible_array, was_squeezed).
    """
    if frame.ndim == 3 and frame.shape[2] == 1:
        return np.squeeze(frame, axis=2), True
    return frame, False


def _from_pil_result(result: np.ndarray, was_squeezed: bool) -> np.ndarray:
    """Convert PIL result back to original format."""
    if was_squeezed and result.ndim == 2:
        return np.expand_dims(result, axis=2)
    return result


def to_image_space(
    matrix: np.ndarray, source_height: float, output_height: float
) -> np.ndarray:
    """Convert a render-space affine into an image-space affine.

    Render space has its origin at the bottom-left with y up, while numpy and PIL
    images have their origin at the top-left with y down.

    Args:
        matrix: Render-space affine from source pixels to output pixels.
        source_height: Height of the source image.
        output_height: Height of the output image.

    Returns:
        Image-space affine from source pixels to output pixels.
    """
    return _clean(flip_y_matrix(output_height) @ matrix @ flip_y_matrix(source_height))


@attrs.define
class RenderContext:
    """Rendering state shared by every frame of a job.

    Attributes:
        size: Output `(width, height)`.
        coefficients: PIL affine coefficients mapping output to source pixels.
        resample: PIL resampling filter.
        fill: Fill value for output pixels that fall outside the source.
        crop_box: `(x1, y1, x2, y2)` when the transform is a whole-pixel
            translation. Such frames are cropped by slicing instead of resampling.
    """

    size: tuple[int, int]
    coefficients: tuple[float, ...]
    resample: Image.Resampling = Image.Resampling.BILINEAR
    fill: tuple[int, ...] | int = 0
    crop_box: Optional[tuple[int, int, int, int]] = None

    @classmethod
    def from_plan(
        cls,
        plan: "Plan",
        quality: str = "bilinear",
        fill: tuple[int, ...] | int = 0,
    ) -> RenderContext:
        """Precompute the rendering state for a plan."""
        width, height = plan.render_size
        matrix = to_image_space(plan.frame_transform, plan.source_size[1], height)

        crop_box = None
        translation = matrix[:2, 2]
        if np.array_equal(matrix[:2, :2], np.eye(2)) and np.array_equal(
            translation, np.round(translation)
        ):
            x1, y1 = int(-translation[0]), int(-translation[1])
            crop_box = (x1, y1, x1 + width, y1 + height)

        inverse = _clean(np.linalg.inv(matrix))
        return cls(
            size=(int(width), int(height)),
            coefficients=tuple(float(v) for v in inverse[:2].ravel()),
            resample=QUALITY_TO_RESAMPLE.get(quality, Image.Resampling.BILINEAR),
            fill=fill,
            crop_box=crop_box,
        )

    def render(self, image: np.ndarray) -> np.ndarray:
        """Render one source image into a new output array."""
        if self.crop_box is not None:
            x1, y1, x2, y2 = self.crop_box
            return image[y1:y2, x1:x2].copy()

        if isinstance(self.fill, int) and image.ndim == 3 and image.shape[2] > 1:
            fill_color = (self.fill,) * image.shape[2]
        else:
            fill_color = self.fill

        pil_frame, was_squeezed = _to_pil_compatible(image)
        pil_img = Image.fromarray(pil_frame).transform(
            self.size,
            Image.Transform.AFFINE,
            self.coefficients,
            resample=self.resample,
            fillcolor=fill_color,
        )
        return _from_pil_result(np.asarray(pil_img), was_squeezed)


class FrameCompositor:
    """Render source frames according to a `CompositionPlan`.

    One compositor is created per export and reuses a single `RenderContext` for
    every frame. It holds no job state and performs no I/O.

    Args:
        plan: The composition plan of the job, or a `TransformPlan` for still
            images.
        quality: Interpolation quality. One of "nearest", "bilinear", "bicubic".
        fill: Fill value for areas outside the source frame.

    Raises:
        CompositorError: If no plan is given.
    """

    def __init__(
        self,
        plan: "Plan",
        quality: str = "bilinear",
        fill: tuple[int, ...] | int = 0,
    ):
        if plan is None:
            raise CompositorError("Cannot render frames without a composition plan.")
        self.plan = plan
        self.context = RenderContext.from_plan(plan, quality=quality, fill=fill)

    @property
    def render_size(self) -> tuple[int, int]:
        """Output `(width, height)`."""
        return self.context.size

    def render_array(self, image: Optional[np.ndarray]) -> np.ndarray:
        """Render a source image given as a `(H, W)` or `(H, W, C)` array.

        Raises:
            CompositorError: If the image is missing or does not have the planned
                source size.
        """
        if image is None:
            raise CompositorError("Missing source frame.")
        height, width = image.shape[:2]
        if (width, height) != tuple(self.plan.source_size):
            raise CompositorError(
                f"Source frame is {width}x{height}, expected "
                f"{self.plan.source_size[0]}x{self.plan.source_size[1]}."
            )
        return self.context.render(image)

    def render(self, frame: Optional[av.VideoFrame]) -> av.VideoFrame:
        """Render a decoded video frame into a new RGB video frame.

        Raises:
            CompositorError: If the frame is missing or has an unexpected size.
        """
        if frame is None:
            raise CompositorError("Missing source frame.")
        image = self.render_array(frame.to_ndarray(format="rgb24"))
        return av.VideoFrame.from_ndarray(image, format="rgb24")

"""Geometric planning for crop jobs.

This module computes, without any I/O, where a user's crop rectangle lands once a
frame has been made upright and rotated. All matrices are 3x3 affines acting on
homogeneous column vectors `[x, y, 1]`.

Two coordinate conventions are involved:

- Display space: origin at the top-left, y increasing downward. Stored orientation
  transforms and user crop rectangles are given in this space.
- Render space: origin at the bottom-left, y increasing upward. The planned frame
  transform and the planned crop rectangle are expressed in this space, which is
  why the user rotation is applied as `2π - angle` and the crop rectangle is
  flipped vertically.
"""

from __future__ import annotations

import math

import attrs
import numpy as np

from crop_io.errors import InvalidCropRectError
from crop_io.model.job import CropRect

# Values closer than this to an integer are treated as that integer.
_EPS = 1e-9


def _clean(matrix: np.ndarray) -> np.ndarray:
    """Snap entries that are within floating point noise of an integer."""
    rounded = np.round(matrix)
    return np.where(np.abs(matrix - rounded) < _EPS, rounded, matrix) + 0.0


def _snap(value: float) -> float:
    rounded = round(value)
    return float(rounded) if abs(value - rounded) < _EPS else float(value)


def _as_affine(value) -> np.ndarray:
    matrix = np.asarray(value, dtype=np.float64)
    if matrix.shape == (2, 2):
        affine = np.eye(3, dtype=np.float64)
        affine[:2, :2] = matrix
        return affine
    if matrix.shape == (2, 3):
        return np.vstack([matrix, [0.0, 0.0, 1.0]])
    if matrix.shape != (3, 3):
        raise ValueError(f"Expected a 2x2, 2x3 or 3x3 matrix, got {matrix.shape}.")
    return matrix


def translation_matrix(tx: float, ty: float) -> np.ndarray:
    """Return an affine translating by `(tx, ty)`."""
    return np.array([[1, 0, tx], [0, 1, ty], [0, 0, 1]], dtype=np.float64)


def rotation_matrix(theta: float) -> np.ndarray:
    """Return an affine rotating by `theta` radians about the origin.

    In a y-up space (render space) positive angles rotate counter-clockwise.
    """
    cos_a = math.cos(theta)
    sin_a = math.sin(theta)
    matrix = np.array(
        [[cos_a, -sin_a, 0], [sin_a, cos_a, 0], [0, 0, 1]], dtype=np.float64
    )
    return _clean(matrix)


def flip_y_matrix(height: float) -> np.ndarray:
    """Return an affine mapping `y -> height - y`.

    This converts between display space and render space for a frame of the given
    height. With `height=0` it is a pure reflection about the x axis.
    """
    return np.array([[1, 0, 0], [0, -1, height], [0, 0, 1]], dtype=np.float64)


def transform_extent(
    matrix: np.ndarray, size: tuple[float, float]
) -> tuple[float, float, float, float]:
    """Bounding box of the rectangle `[0, w] x [0, h]` after an affine.

    Args:
        matrix: 3x3 affine.
        size: `(width, height)` of the rectangle.

    Returns:
        `(min_x, min_y, max_x, max_y)` of the transformed rectangle.
    """
    width, height = size
    corners = np.array(
        [[0, width, 0, width], [0, 0, height, height], [1, 1, 1, 1]],
        dtype=np.float64,
    )
    points = matrix @ corners
    min_x, max_x = points[0].min(), points[0].max()
    min_y, max_y = points[1].min(), points[1].max()
    return (_snap(min_x), _snap(min_y), _snap(max_x), _snap(max_y))


def translate_to_origin(
    matrix: np.ndarray, size: tuple[float, float]
) -> tuple[np.ndarray, tuple[float, float]]:
    """Re-translate an affine so the transformed frame starts at (0, 0).

    Args:
        matrix: Affine applied to a frame of the given size.
        size: `(width, height)` of the untransformed frame.

    Returns:
        Tuple of `(matrix, (width, height))` where the matrix maps the frame into
        `[0, width] x [0, height]` with no negative coordinates.
    """
    min_x, min_y, max_x, max_y = transform_extent(matrix, size)
    moved = _clean(translation_matrix(-min_x, -min_y) @ matrix)
    return moved, (_snap(max_x - min_x), _snap(max_y - min_y))


@attrs.frozen(eq=False)
class Orientation:
    """Stored orientation transform of a video track.

    The matrix is expressed in display space and maps raw decoded pixel
    coordinates to the upright picture. Only its linear part matters to the
    planner, which re-anchors the result at the origin.

    Attributes:
        matrix: 3x3 affine. Defaults to the identity.
    """

    matrix: np.ndarray = attrs.field(factory=lambda: np.eye(3), converter=_as_affine)

    @classmethod
    def from_rotation(cls, degrees: float, mirror: bool = False) -> Orientation:
        """Create an orientation from a display rotation.

        Args:
            degrees: Clockwise rotation needed to show the raw frame upright. This
                is the value of the "rotate" tag found in many MP4/MOV files.
            mirror: If True, the raw frame is mirrored left-right before rotating.

        Returns:
            The corresponding `Orientation`.
        """
        angle = math.radians(degrees)
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)
        # Clockwise rotation in a y-down space.
        linear = np.array([[cos_a, -sin_a], [sin_a, cos_a]], dtype=np.float64)
        if mirror:
            linear = linear @ np.array([[-1, 0], [0, 1]], dtype=np.float64)
        return cls(matrix=_clean(_as_affine(linear)))

    @classmethod
    def from_matrix(
        cls, a: float, b: float, c: float, d: float, tx: float = 0, ty: float = 0
    ) -> Orientation:
        """Create an orientation from affine coefficients.

        The coefficients follow the usual `(a, b, c, d, tx, ty)` layout where
        `x' = a*x + c*y + tx` and `y' = b*x + d*y + ty`.
        """
        return cls(matrix=np.array([[a, c, tx], [b, d, ty], [0, 0, 1]]))

    @classmethod
    def from_exif(cls, tag: int | None) -> Orientation:
        """Create an orientation from an EXIF orientation tag (1-8)."""
        degrees, mirror = EXIF_ORIENTATIONS.get(tag or 1, (0, False))
        return cls.from_rotation(degrees, mirror=mirror)

    @property
    def has_rotation(self) -> bool:
        """True if the transform swaps axes (non-zero off-diagonal terms)."""
        return self.matrix[0, 1] != 0 or self.matrix[1, 0] != 0

    @property
    def is_identity(self) -> bool:
        """True if the linear part is the identity."""
        return bool(np.allclose(self.matrix[:2, :2], np.eye(2)))


# EXIF orientation tag -> (clockwise degrees, mirrored before rotation)
EXIF_ORIENTATIONS = {
    1: (0, False),
    2: (0, True),
    3: (180, False),
    4: (180, True),
    5: (270, True),
    6: (90, False),
    7: (90, True),
    8: (270, False),
}


def normalize_matrix(
    orientation: Orientation, source_size: tuple[int, int]
) -> tuple[np.ndarray, tuple[float, float]]:
    """Compute the render-space transform that makes a raw frame upright.

    The display-space orientation is conjugated by a vertical flip translated by
    the frame height, then anchored at the origin.

    Args:
        orientation: Stored orientation of the track.
        source_size: Raw `(width, height)` of decoded frames.

    Returns:
        Tuple of `(matrix, (width, height))` of the upright frame.
    """
    if orientation.is_identity:
        return np.eye(3, dtype=np.float64), (
            float(source_size[0]),
            float(source_size[1]),
        )
    _, height = source_size
    unrotate = flip_y_matrix(0) @ orientation.matrix @ flip_y_matrix(height)
    return translate_to_origin(unrotate, source_size)


@attrs.frozen(eq=False)
class TransformPlan:
    """Output geometry of a crop job.

    Attributes:
        source_size: Raw `(width, height)` of decoded frames.
        normalize: Render-space transform making the raw frame upright.
        frame_transform: Render-space transform from raw pixels to output pixels.
            Output pixels span `[0, render_width] x [0, render_height]`.
        extent: `(width, height)` of the upright, rotated frame.
        crop_rect: Crop rectangle in render space (bottom-left origin).
        render_size: Output `(width, height)`. Always equal to the crop size.
    """

    source_size: tuple[int, int]
    normalize: np.ndarray
    frame_transform: np.ndarray
    extent: tuple[float, float]
    crop_rect: CropRect
    render_size: tuple[int, int]

    @property
    def display_crop_rect(self) -> CropRect:
        """The planned crop rectangle back in display space (top-left origin)."""
        height = self.extent[1]
        rect = self.crop_rect
        return CropRect(rect.x, height - rect.y - rect.height, rect.width, rect.height)


def _align_rect(
    rect: CropRect, bounds: CropRect, alignment: int
) -> tuple[int, int, int, int]:
    """Snap a render-space rectangle to whole, aligned pixels inside `bounds`.

    The display-space top-left corner (render-space left/top edges) is kept and
    the size is reduced to a multiple of `alignment`.
    """
    max_x = math.floor(bounds.max_x + 1e-6)
    max_y = math.floor(bounds.max_y + 1e-6)
    x1 = int(round(rect.x))
    x2 = min(int(round(rect.max_x)), max_x)
    y2 = min(int(round(rect.max_y)), max_y)
    y1 = int(round(rect.y))
    width = x2 - x1
    height = y2 - y1
    width -= width % alignment
    height -= height % alignment
    return x1, y2 - height, width, height


def plan_transform(
    source_size: tuple[int, int],
    rect: CropRect,
    angle: float = 0.0,
    orientation: Orientation | None = None,
    alignment: int = 2,
) -> TransformPlan:
    """Plan the per-frame transform and output size of a crop.

    Steps:
        1. If the track has a stored orientation, make the frame upright.
        2. If `angle` is non-zero, rotate by `2π - angle` and re-anchor at the
           origin. Arbitrary angles are supported; the extent is the bounding box
           of the rotated frame.
        3. Flip the display-space rectangle into render space with
           `flipped_y = frame_height - y - height`.
        4. Intersect it with the frame extent and snap it to whole pixels whose
           width and height are multiples of `alignment`.

    Args:
        source_size: Raw `(width, height)` of decoded frames.
        rect: Crop rectangle in display space of the upright, rotated frame.
        angle: User rotation in radians. Positive is clockwise on screen.
        orientation: Stored orientation of the track. Defaults to the identity.
        alignment: Pixel alignment of the output size. Use 2 for yuv420p output.

    Returns:
        The `TransformPlan`.

    Raises:
        InvalidCropRectError: If the rectangle has no area or does not overlap the
            transformed frame by at least `alignment` pixels in each direction.
    """
    if rect.is_empty():
        raise InvalidCropRectError(
            f"Crop rect must have a positive size, got {rect.width}x{rect.height}."
        )
    if orientation is None:
        orientation = Orientation()

    normalize, (width, height) = normalize_matrix(orientation, source_size)

    matrix = normalize
    if angle != 0:
        rotate = rotation_matrix(2 * math.pi - angle)
        matrix, (width, height) = translate_to_origin(rotate @ normalize, source_size)

    flipped = CropRect(rect.x, height - rect.y - rect.height, rect.width, rect.height)
    bounds = CropRect(0, 0, width, height)
    clamped = bounds.intersection(flipped)
    if clamped.is_empty():
        raise InvalidCropRectError(
            f"Crop rect {rect.to_tuple()} does not intersect the frame "
            f"({width:g}x{height:g})."
        )

    x, y, crop_w, crop_h = _align_rect(clamped, bounds, alignment)
    if crop_w <= 0 or crop_h <= 0:
        raise InvalidCropRectError(
            f"Crop rect {rect.to_tuple()} is degenerate after clamping to the frame "
            f"({width:g}x{height:g})."
        )

    frame_transform = _clean(translation_matrix(-x, -y) @ matrix)

    return TransformPlan(
        source_size=(int(source_size[0]), int(source_size[1])),
        normalize=normalize,
        frame_transform=frame_transform,
        extent=(width, height),
        crop_rect=CropRect(x, y, crop_w, crop_h),
        render_size=(crop_w, crop_h),
    )

"""Data model for crop requests.

A `CropJob` couples a source file with a `CropRect` given in the coordinate space
of the displayed (upright) frame, where the origin is the top-left corner and y
increases downward, and a rotation angle in radians.
"""

from __future__ import annotations

from pathlib import Path

import attrs

from crop_io.errors import InvalidCropRectError


@attrs.frozen
class CropRect:
    """Axis-aligned rectangle in pixels.

    Attributes:
        x: Left edge.
        y: Top edge in UI space (or bottom edge in render space).
        width: Width of the rectangle.
        height: Height of the rectangle.
    """

    x: float = attrs.field(converter=float)
    y: float = attrs.field(converter=float)
    width: float = attrs.field(converter=float)
    height: float = attrs.field(converter=float)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> CropRect:
        """Create a rectangle from its (x1, y1) and (x2, y2) corners."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    @classmethod
    def parse(cls, value: str) -> CropRect:
        """Parse a rectangle from a `"x,y,width,height"` string.

        Raises:
            ValueError: If the value does not have exactly 4 numeric parts.
        """
        parts = value.split(",")
        if len(parts) != 4:
            raise ValueError(f"Crop rect must have 4 values (x,y,w,h), got: {value}")
        x, y, w, h = [float(p) for p in parts]
        return cls(x=x, y=y, width=w, height=h)

    @property
    def max_x(self) -> float:
        """Right edge."""
        return self.x + self.width

    @property
    def max_y(self) -> float:
        """Far vertical edge."""
        return self.y + self.height

    @property
    def size(self) -> tuple[float, float]:
        """Size as `(width, height)`."""
        return (self.width, self.height)

    def is_empty(self) -> bool:
        """Return True if the rectangle has no area."""
        return self.width <= 0 or self.height <= 0

    def intersection(self, other: CropRect) -> CropRect:
        """Intersect with another rectangle.

        Returns a zero-sized rectangle at the origin when the two do not overlap.
        """
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.max_x, other.max_x)
        y2 = min(self.max_y, other.max_y)
        if x2 <= x1 or y2 <= y1:
            return CropRect(0, 0, 0, 0)
        return CropRect.from_corners(x1, y1, x2, y2)

    def contains(self, other: CropRect, tol: float = 1e-6) -> bool:
        """Return True if `other` lies inside this rectangle."""
        return (
            other.x >= self.x - tol
            and other.y >= self.y - tol
            and other.max_x <= self.max_x + tol
            and other.max_y <= self.max_y + tol
        )

    def to_tuple(self) -> tuple[float, float, float, float]:
        """Return `(x, y, width, height)`."""
        return (self.x, self.y, self.width, self.height)


def _validate_rect(instance, attribute, value: CropRect):
    if value.is_empty():
        raise InvalidCropRectError(
            f"Crop rect must have a positive size, got {value.width}x{value.height}."
        )


@attrs.frozen
class CropJob:
    """A single crop request.

    Attributes:
        source: Path to the source video.
        rect: Crop rectangle in display space (top-left origin, y down).
        angle: Additional rotation in radians. Positive values rotate the picture
            clockwise as seen on screen. Any value is accepted, although UIs usually
            restrict it to multiples of 90 degrees.

    Raises:
        InvalidCropRectError: If the rectangle has a non-positive width or height.
    """

    source: Path = attrs.field(converter=Path)
    rect: CropRect = attrs.field(validator=_validate_rect)
    angle: float = attrs.field(default=0.0, converter=float)

"""Rotate-and-crop for still images."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError

from crop_io.errors import SourceFileNotFoundError, UnreadableImageError
from crop_io.model.job import CropJob, CropRect
from crop_io.transform.core import Orientation, plan_transform
from crop_io.transform.frame import FrameCompositor

# EXIF tag holding the orientation
EXIF_ORIENTATION_TAG = 0x0112


def crop_image(
    source: str | Path,
    rect: CropRect | Sequence[float],
    angle: float = 0.0,
    output_path: Optional[str | Path] = None,
    quality: str = "bilinear",
) -> Path:
    """Rotate and crop an image file.

    The image is first made upright according to its EXIF orientation, so `rect`
    refers to the image as it is displayed.

    Args:
        source: Path to the source image.
        rect: Crop rectangle as a `CropRect` or `(x, y, width, height)`.
        angle: Rotation in radians. Positive values rotate clockwise on screen.
        output_path: Output path. Defaults to `<stem>_cropped<suffix>` next to the
            source.
        quality: Interpolation quality. One of "nearest", "bilinear", "bicubic".

    Returns:
        Path to the saved image.

    Raises:
        SourceFileNotFoundError: If the source does not exist.
        UnreadableImageError: If the source is not an image.
        InvalidCropRectError: If the rectangle is empty or misses the image.
    """
    source = Path(source)
    if not source.exists():
        raise SourceFileNotFoundError(f"Source file not found: {source}")
    if not isinstance(rect, CropRect):
        rect = CropRect(*rect)
    job = CropJob(source=source, rect=rect, angle=angle)

    if output_path is None:
        output_path = source.with_name(f"{source.stem}_cropped{source.suffix}")
    output_path = Path(output_path)

    try:
        img = Image.open(source)
    except UnidentifiedImageError as exc:
        raise UnreadableImageError(f"Could not read image {source}: {exc}") from exc

    with img:
        orientation = Orientation.from_exif(img.getexif().get(EXIF_ORIENTATION_TAG))
        if img.mode not in ("L", "RGB", "RGBA"):
            img = img.convert("RGB")
        frame = np.asarray(img)

    height, width = frame.shape[:2]
    plan = plan_transform(
        (width, height), job.rect, angle=job.angle, orientation=orientation, alignment=1
    )
    out = FrameCompositor(plan, quality=quality).render_array(frame)

    out_img = Image.fromarray(out)
    if out_img.mode == "RGBA" and output_path.suffix.lower() in (".jpg", ".jpeg"):
        out_img = out_img.convert("RGB")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    out_img.save(output_path)
    return output_path

"""Transform module for rotate-and-crop geometry and per-frame compositing.

This module provides the pure geometry of a crop job and the per-frame renderer
that applies it:
- Planning: Make the stored orientation upright, rotate, flip the crop rectangle
  into render space and clamp it to the frame
- Compositing: Render each decoded frame into an output of exactly the planned size

Example:
    >>> from crop_io.model.job import CropRect
    >>> from crop_io.transform import plan_transform
    >>> plan = plan_transform((1920, 1080), CropRect(480, 270, 960, 540))
    >>> plan.render_size
    (960, 540)
"""

from crop_io.transform.core import Orientation, TransformPlan, plan_transform
from crop_io.transform.frame import FrameCompositor, RenderContext

__all__ = [
    "FrameCompositor",
    "Orientation",
    "RenderContext",
    "TransformPlan",
    "plan_transform",
]

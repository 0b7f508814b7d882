"""This module exposes all high level APIs for crop-io."""

import lazy_loader as lazy

# Version is lightweight, keep it eager
from crop_io.version import __version__

# Lazy load everything else using lazy_loader
__getattr__, __dir__, __all__ = lazy.attach(
    __name__,
    submodules=["io", "model", "transform"],
    submod_attrs={
        "errors": [
            "CompositionCreationError",
            "CompositorError",
            "CropCancelledError",
            "CropError",
            "CropErrorKind",
            "ExportFailedError",
            "InvalidCropRectError",
            "SourceFileNotFoundError",
            "UnreadableImageError",
            "VideoTrackNotFoundError",
        ],
        "io.asset": ["MediaAsset", "SourceTrack", "inspect_asset"],
        "io.composition": ["build_composition", "build_plan"],
        "io.coordinator": ["ExportCoordinator", "crop_video"],
        "io.export": ["EXPORT_PRESETS", "ExportSession", "ExportSettings"],
        "io.image": ["crop_image"],
        "model.composition": [
            "Composition",
            "CompositionPlan",
            "CompositionTrack",
            "TimeRange",
        ],
        "model.job": ["CropJob", "CropRect"],
        "model.state": ["CropResult", "ExportState", "ExportStatus"],
        "transform.core": ["Orientation", "TransformPlan", "plan_transform"],
        "transform.frame": ["FrameCompositor", "RenderContext"],
    },
)

# Add __version__ to __all__ (it's not in lazy_loader's __all__)
__all__ = ["__version__"] + __all__

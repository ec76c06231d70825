from .batch import BatchFailure, BatchItem, BatchProgress, BatchResult, BatchSuccess, RasterRef
from .image_spec import ImageSpec
from .logo import LogoAsset, LogoPlacement, LogoPlacementPlan, LogoPosition
from .parameters import (
    Alignment,
    GradientSettings,
    GradientStop,
    ImageAnalysis,
    LogoSettings,
    Margins,
    OverlayParameters,
    ParameterUpdates,
    TextBlock,
    TextPosition,
    TextShadow,
)
from .records import EditedImageRecord, ImageSpecMatch, MatchKind, SourceImage

__all__ = [
    "ImageSpec",
    "Alignment",
    "TextPosition",
    "TextShadow",
    "TextBlock",
    "GradientStop",
    "GradientSettings",
    "LogoSettings",
    "Margins",
    "OverlayParameters",
    "ParameterUpdates",
    "ImageAnalysis",
    "LogoPosition",
    "LogoAsset",
    "LogoPlacement",
    "LogoPlacementPlan",
    "RasterRef",
    "BatchItem",
    "BatchSuccess",
    "BatchFailure",
    "BatchResult",
    "BatchProgress",
    "MatchKind",
    "SourceImage",
    "ImageSpecMatch",
    "EditedImageRecord",
]

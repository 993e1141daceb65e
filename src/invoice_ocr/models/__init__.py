from .callbacks import ProcessingCallbacks
from .page_models import (
    ImageTile,
    PageText,
    PipelineResult,
    RasterPage,
    TileRect,
    TokenUsage,
    TranscriptionResult,
)

__all__ = [
    "ProcessingCallbacks",
    "ImageTile",
    "PageText",
    "PipelineResult",
    "RasterPage",
    "TileRect",
    "TokenUsage",
    "TranscriptionResult",
]

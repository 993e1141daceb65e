"""
Invoice OCR Pipeline Package
"""

from .config import PipelineConfig
from .errors import (
    ConfigError,
    DocumentLoadError,
    OCRError,
    PipelineError,
    RasterizationError,
    TileExtractionError,
    TranscriptionError,
)
from .models import (
    ImageTile,
    PageText,
    PipelineResult,
    ProcessingCallbacks,
    RasterPage,
    TileRect,
    TokenUsage,
    TranscriptionResult,
)
from .tiling import plan_tiles
from .pdf_handler import PdfDocument, extract_tiles, load_document, pages_to_images
from .processing import join_pages, reassemble_pages
from .transcriber import OpenAIVisionBackend, VisionResponse, VisionTranscriber
from .dispatcher import dispatch_tiles
from .models.document_job import DocumentJob, PipelineStage, process_document

__all__ = [
    "PipelineConfig",
    "ConfigError",
    "DocumentLoadError",
    "OCRError",
    "PipelineError",
    "RasterizationError",
    "TileExtractionError",
    "TranscriptionError",
    "ImageTile",
    "PageText",
    "PipelineResult",
    "ProcessingCallbacks",
    "RasterPage",
    "TileRect",
    "TokenUsage",
    "TranscriptionResult",
    "plan_tiles",
    "PdfDocument",
    "extract_tiles",
    "load_document",
    "pages_to_images",
    "join_pages",
    "reassemble_pages",
    "OpenAIVisionBackend",
    "VisionResponse",
    "VisionTranscriber",
    "dispatch_tiles",
    "DocumentJob",
    "PipelineStage",
    "process_document",
]

"""Exception taxonomy for the OCR pipeline."""

from typing import Any, Optional


class OCRError(Exception):
    """Base class for every error raised by the pipeline."""

    code = "OCR_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code


class ConfigError(OCRError):
    code = "CONFIG_ERROR"


class DocumentLoadError(OCRError):
    code = "DOCUMENT_LOAD_ERROR"


class RasterizationError(OCRError):
    """PDF could not be turned into page images.

    ``page_index`` is None when the whole document is unreadable, which is
    fatal for the pipeline. A page-level error only skips that page.
    """

    code = "PDF_PROCESSING_ERROR"

    def __init__(
        self,
        message: str,
        page_index: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.page_index = page_index

    @property
    def is_document_level(self) -> bool:
        return self.page_index is None


class TileExtractionError(OCRError):
    code = "TILE_EXTRACTION_ERROR"


class TranscriptionError(OCRError):
    """Vision model call failed.

    ``transient`` marks failures worth retrying (timeouts, connection
    problems, 5xx and rate limiting).
    """

    code = "VISION_API_ERROR"

    def __init__(
        self,
        message: str,
        transient: bool = False,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.transient = transient
        self.status_code = status_code


class PipelineError(OCRError):
    code = "PIPELINE_ERROR"

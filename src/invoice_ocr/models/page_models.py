"""Data models for page, tile and transcription processing."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class RasterPage:
    """Represents a single rasterized page from a PDF."""

    page_index: int
    image_bytes: bytes
    dimensions: Tuple[int, int]  # (width, height)

    @property
    def width(self) -> int:
        return self.dimensions[0]

    @property
    def height(self) -> int:
        return self.dimensions[1]


@dataclass(frozen=True)
class TileRect:
    """Rectangle of a page image, in pixels."""

    chunk_index: int
    x: int
    y: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower) as used by PIL crop."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def fits_within(self, width: int, height: int) -> bool:
        return (
            self.x >= 0
            and self.y >= 0
            and self.width > 0
            and self.height > 0
            and self.x + self.width <= width
            and self.y + self.height <= height
        )


@dataclass
class ImageTile:
    """A cropped, independently encoded piece of a page."""

    page_index: int
    chunk_index: int
    image_bytes: bytes
    dimensions: Tuple[int, int]

    @property
    def tile_id(self) -> str:
        return f"p{self.page_index + 1}c{self.chunk_index + 1}"


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(self.input + other.input, self.output + other.output)


@dataclass(frozen=True)
class TranscriptionResult:
    """Outcome of transcribing one tile, successful or not."""

    page_index: int
    chunk_index: int
    text: str = ""
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    succeeded: bool = True
    error_message: Optional[str] = None
    processing_time_ms: int = 0

    @property
    def tile_id(self) -> str:
        return f"p{self.page_index + 1}c{self.chunk_index + 1}"


@dataclass(frozen=True)
class PageText:
    page_index: int
    text: str
    chunk_count: int = 0
    failed_chunks: int = 0


@dataclass(frozen=True)
class PipelineResult:
    """Final output of a document run."""

    full_text: str
    total_pages: int
    total_chunks: int
    processing_time_ms: int
    tokens_used_total: int
    success_rate: float
    errors: List[str] = field(default_factory=list)
    successful_chunks: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    pages: List[PageText] = field(default_factory=list)
    timed_out: bool = False

    @property
    def average_chunks_per_page(self) -> float:
        if not self.total_pages:
            return 0.0
        return self.total_chunks / self.total_pages

    def to_dict(self, include_text: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        data["average_chunks_per_page"] = round(self.average_chunks_per_page, 2)
        if not include_text:
            data.pop("full_text")
            for page in data["pages"]:
                page.pop("text")
        return data

"""Shared fakes and image helpers for the test suite."""

import asyncio
import random
import time
from io import BytesIO

import pytest
from PIL import Image, ImageDraw

from invoice_ocr.config import PipelineConfig
from invoice_ocr.errors import RasterizationError, TranscriptionError
from invoice_ocr.models.page_models import ImageTile, RasterPage, TokenUsage
from invoice_ocr.transcriber import VisionResponse


def make_png(width: int, height: int, color: str = "white") -> bytes:
    img = Image.new("RGB", (width, height), color=color)
    draw = ImageDraw.Draw(img)
    draw.text((10, 10), "INVOICE", fill="black")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def make_tile(page_index: int, chunk_index: int, size=(4, 4)) -> ImageTile:
    return ImageTile(page_index, chunk_index, f"{page_index}:{chunk_index}".encode(), size)


def tile_key(tile: ImageTile) -> str:
    return tile.image_bytes.decode()


class FakeDocument:
    """Stands in for PdfDocument, serving prebuilt page sizes."""

    def __init__(self, sizes, failing_pages=(), render_delay=0.0):
        self.sizes = list(sizes)
        self.failing_pages = set(failing_pages)
        self.render_delay = render_delay
        self.closed = False
        self.rendered = []

    @property
    def page_count(self):
        return len(self.sizes)

    def render_page(self, page_index, dpi):
        self.rendered.append(page_index)
        if self.render_delay:
            time.sleep(self.render_delay)
        if page_index in self.failing_pages:
            raise RasterizationError(
                f"Rendering page {page_index + 1} failed", page_index=page_index
            )
        width, height = self.sizes[page_index]
        return RasterPage(page_index, make_png(width, height), (width, height))

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class FakeOpener:
    def __init__(self, sizes, failing_pages=(), render_delay=0.0):
        self.document = FakeDocument(sizes, failing_pages, render_delay)

    def __call__(self, pdf_bytes):
        return self.document


class FakeTranscriber:
    """Returns the tile id as text, optionally failing or sleeping."""

    def __init__(self, failing=(), max_delay=0.0, seed=1234):
        self.failing = set(failing)
        self.max_delay = max_delay
        self.random = random.Random(seed)
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = []

    async def transcribe(self, tile: ImageTile) -> VisionResponse:
        self.calls.append(tile.tile_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.max_delay:
                await asyncio.sleep(self.random.uniform(0, self.max_delay))
            else:
                await asyncio.sleep(0)
            if tile.tile_id in self.failing:
                raise TranscriptionError("Vision API error 400: bad image", status_code=400)
            return VisionResponse(f"text {tile.tile_id}", TokenUsage(input=100, output=10))
        finally:
            self.in_flight -= 1


@pytest.fixture
def config():
    return PipelineConfig(
        api_key="sk-test",
        retry_backoff_ms=0,
        max_retries=2,
        transcription_timeout_ms=1000,
    )

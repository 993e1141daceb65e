import base64
import logging
import tempfile
import time
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

import requests
from PIL import Image, UnidentifiedImageError
from pdf2image import convert_from_path
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PyPDF2 import PdfReader

from .errors import DocumentLoadError, RasterizationError, TileExtractionError
from .models.page_models import ImageTile, RasterPage, TileRect

log = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"
DOWNLOAD_TIMEOUT_S = 30
USER_AGENT = "invoice-ocr/0.1"
RENDER_TIMEOUT_S = 120
DEADLINE_MESSAGE = "pipeline deadline exceeded"


def load_document(source: str) -> bytes:
    """Load PDF bytes from a path, file:// URL, data: URI or http(s) URL."""
    if source.startswith("data:"):
        header, _, data = source.partition(",")
        if "base64" not in header:
            raise DocumentLoadError("Invalid PDF data URI format")
        try:
            pdf_bytes = base64.b64decode(data, validate=True)
        except ValueError as e:
            raise DocumentLoadError("PDF data URI is not valid base64") from e
        log.info(f"PDF loaded from data URI ({len(pdf_bytes) // 1024}KB)")

    elif source.startswith(("http://", "https://")):
        try:
            response = requests.get(
                source,
                headers={"User-Agent": USER_AGENT},
                timeout=DOWNLOAD_TIMEOUT_S,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise DocumentLoadError(f"Failed to download PDF: {e}") from e
        pdf_bytes = response.content
        log.info(f"PDF downloaded ({len(pdf_bytes) // 1024}KB)")

    else:
        if source.startswith("file://"):
            path = Path(unquote(urlparse(source).path))
        else:
            path = Path(source)
        if not path.is_file():
            raise DocumentLoadError(f"Local file not found: {path}")
        pdf_bytes = path.read_bytes()
        log.info(f"PDF loaded from {path} ({len(pdf_bytes) // 1024}KB)")

    if not pdf_bytes.startswith(PDF_MAGIC):
        raise DocumentLoadError("Loaded file is not a valid PDF")
    return pdf_bytes


def count_pages(pdf_bytes: bytes) -> int:
    """Quick count of pages using PDF metadata"""
    try:
        return len(PdfReader(BytesIO(pdf_bytes)).pages)
    except Exception as e:
        log.error(f"❌ Error reading PDF metadata: {e}")
        raise RasterizationError(f"Failed to read PDF metadata: {e}") from e


def encode_png(img: Image.Image) -> bytes:
    buffer = BytesIO()
    img.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


class PdfDocument:
    """A PDF opened for page-by-page rendering.

    Rendering goes through poppler via pdf2image, which works on files, so
    the document bytes live in a private temporary directory until close().
    """

    def __init__(self, pdf_bytes: bytes):
        if not pdf_bytes.startswith(PDF_MAGIC):
            raise RasterizationError("Document does not start with a PDF header")

        self._page_count = count_pages(pdf_bytes)
        self._tmpdir = tempfile.TemporaryDirectory(prefix="invoice-ocr-")
        self.work_dir = Path(self._tmpdir.name)
        self.pdf_path = self.work_dir / "document.pdf"
        try:
            self.pdf_path.write_bytes(pdf_bytes)
        except OSError as e:
            self.close()
            raise RasterizationError(f"Could not stage PDF for rendering: {e}") from e

    @property
    def page_count(self) -> int:
        """Return total number of pages in the PDF."""
        return self._page_count

    def render_page(self, page_index: int, dpi: int) -> RasterPage:
        """Render one zero-indexed page to a PNG-encoded RasterPage."""
        if page_index < 0 or page_index >= self.page_count:
            raise ValueError(f"Page {page_index} out of range (0-{self.page_count - 1})")

        page_num = page_index + 1
        with tempfile.TemporaryDirectory(dir=self.work_dir) as out_dir:
            try:
                images = convert_from_path(
                    str(self.pdf_path),
                    dpi=dpi,
                    first_page=page_num,
                    last_page=page_num,
                    fmt="png",
                    output_folder=out_dir,
                    timeout=RENDER_TIMEOUT_S,
                )
            except PDFInfoNotInstalledError as e:
                raise RasterizationError(
                    "Poppler is not installed or not on PATH"
                ) from e
            except (PDFPageCountError, PDFSyntaxError) as e:
                raise RasterizationError(f"Unreadable PDF: {e}") from e
            except PDFPopplerTimeoutError as e:
                raise RasterizationError(
                    f"Rendering page {page_num} timed out", page_index=page_index
                ) from e
            except OSError as e:
                raise RasterizationError(
                    f"Rendering page {page_num} failed: {e}", page_index=page_index
                ) from e

            if not images:
                raise RasterizationError(
                    f"No image produced for page {page_num}", page_index=page_index
                )

            img = images[0].convert("RGB")
            page_bytes = encode_png(img)

        return RasterPage(page_index, page_bytes, (img.width, img.height))

    def close(self) -> None:
        """Remove the temporary rendering directory."""
        self._tmpdir.cleanup()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


DocumentOpener = Callable[[bytes], PdfDocument]


def pages_to_images(
    pdf_bytes: bytes,
    dpi: int,
    max_pages: int,
    opener: DocumentOpener = PdfDocument,
    on_page: Optional[Callable[[int, int], None]] = None,
    deadline: Optional[float] = None,
) -> Tuple[List[RasterPage], List[str]]:
    """Rasterize up to ``max_pages`` pages.

    A page that fails on its own is skipped and reported in the returned
    error list. Whole-document failures raise RasterizationError. Once the
    ``time.monotonic()`` value ``deadline`` has passed, the remaining pages
    are not rendered and are reported as skipped.
    """
    pages: List[RasterPage] = []
    errors: List[str] = []

    with opener(pdf_bytes) as document:
        total = document.page_count
        to_render = min(total, max_pages)
        if total > max_pages:
            log.info(f"Document has {total} pages, processing the first {max_pages}")

        for page_index in range(to_render):
            if deadline is not None and time.monotonic() >= deadline:
                skipped = f"Pages {page_index + 1}-{to_render}"
                if page_index + 1 == to_render:
                    skipped = f"Page {to_render}"
                log.warning(f"{skipped} not rendered: {DEADLINE_MESSAGE}")
                errors.append(f"{skipped}: skipped, {DEADLINE_MESSAGE}")
                break

            try:
                page = document.render_page(page_index, dpi)
            except RasterizationError as e:
                if e.is_document_level:
                    raise
                log.warning(f"Skipping page {page_index + 1}: {e}")
                errors.append(f"Page {page_index + 1}: {e}")
                continue

            log.info(
                f"Page {page_index + 1}/{to_render}: {page.width}x{page.height}px, "
                f"{len(page.image_bytes) // 1024}KB"
            )
            pages.append(page)
            if on_page:
                on_page(page_index, to_render)

    return pages, errors


def extract_tile(img: Image.Image, page_index: int, rect: TileRect) -> ImageTile:
    """Crop ``rect`` out of an opened page image and encode it as PNG."""
    if not rect.fits_within(img.width, img.height):
        raise TileExtractionError(
            f"Tile {rect} does not fit inside a {img.width}x{img.height} page",
            details={"page_index": page_index, "chunk_index": rect.chunk_index},
        )
    try:
        cropped = img.crop(rect.box)
        tile_bytes = encode_png(cropped)
    except (OSError, ValueError) as e:
        raise TileExtractionError(
            f"Could not encode tile {rect.chunk_index} of page {page_index + 1}: {e}"
        ) from e
    return ImageTile(page_index, rect.chunk_index, tile_bytes, (rect.width, rect.height))


def extract_tiles(
    page: RasterPage, rects: Sequence[TileRect]
) -> Tuple[List[ImageTile], List[str]]:
    """Materialize every planned rect, skipping the ones that fail."""
    if len(rects) == 1 and rects[0].box == (0, 0, page.width, page.height):
        return [ImageTile(page.page_index, 0, page.image_bytes, page.dimensions)], []

    try:
        img = Image.open(BytesIO(page.image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        message = f"Page {page.page_index + 1}: could not decode page image: {e}"
        log.error(message)
        return [], [message]

    tiles: List[ImageTile] = []
    errors: List[str] = []
    with img:
        for rect in rects:
            try:
                tiles.append(extract_tile(img, page.page_index, rect))
            except TileExtractionError as e:
                log.warning(f"Failed to create chunk {rect.chunk_index}, skipping: {e}")
                errors.append(
                    f"p{page.page_index + 1}c{rect.chunk_index + 1}: {e}"
                )
    return tiles, errors

import base64
import logging
from functools import lru_cache
from itertools import groupby
from typing import Any, Dict, Iterable, List, Tuple

import tiktoken

from .models.page_models import PageText, TranscriptionResult

log = logging.getLogger(__name__)

IMAGE_TOKEN_SIZE = 28
TOKENIZER_MODEL = "gpt-4o"
PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"


@lru_cache(maxsize=1)
def _encoding():
    return tiktoken.encoding_for_model(TOKENIZER_MODEL)


def estimate_image_tokens(width: int, height: int) -> int:
    return (width // IMAGE_TOKEN_SIZE) * (height // IMAGE_TOKEN_SIZE)


def estimate_text_tokens(text: str) -> int:
    if not text:
        return 0
    return len(_encoding().encode(text))


def to_data_uri(image_bytes: bytes) -> str:
    return f"data:image/png;base64,{base64.b64encode(image_bytes).decode('utf-8')}"


def build_messages(
    instruction: str, image_bytes: bytes, detail: str = "high"
) -> List[Dict[str, Any]]:
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": instruction},
                {
                    "type": "image_url",
                    "image_url": {"url": to_data_uri(image_bytes), "detail": detail},
                },
            ],
        }
    ]


def clean_text_output(text: str) -> str:
    """Remove code block fences the model sometimes wraps its output in"""
    lines = text.strip().split("\n")

    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]

    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]

    return "\n".join(lines).strip()


def reassemble_pages(
    results: Iterable[TranscriptionResult], page_indices: Iterable[int] = ()
) -> List[PageText]:
    """Group tile results into per-page text.

    Chunk texts of a page are joined with a newline in chunk order. Text in
    tile overlaps is kept as-is. Pages listed in ``page_indices`` that have no
    results at all still get an empty entry.
    """

    def key(r: TranscriptionResult) -> Tuple[int, int]:
        return (r.page_index, r.chunk_index)

    by_page = {
        page_index: list(chunks)
        for page_index, chunks in groupby(sorted(results, key=key), key=lambda r: r.page_index)
    }
    for page_index in page_indices:
        by_page.setdefault(page_index, [])

    pages = []
    for page_index in sorted(by_page):
        chunks = by_page[page_index]
        texts = [c.text for c in chunks if c.succeeded]
        failed = len(chunks) - len(texts)
        pages.append(
            PageText(
                page_index=page_index,
                text="\n".join(texts).strip(),
                chunk_count=len(chunks),
                failed_chunks=failed,
            )
        )
        log.debug(
            f"Page {page_index + 1}: {len(pages[-1].text)} characters from "
            f"{len(texts)}/{len(chunks)} chunks"
        )
    return pages


def join_pages(pages: Iterable[PageText]) -> str:
    return PAGE_BREAK.join(page.text for page in sorted(pages, key=lambda p: p.page_index))

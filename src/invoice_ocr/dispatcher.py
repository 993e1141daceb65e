"""Fan tile transcriptions out to the vision model with a concurrency cap."""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Protocol, Sequence

from .errors import TranscriptionError
from .models.page_models import ImageTile, TranscriptionResult

log = logging.getLogger(__name__)

ABANDONED_MESSAGE = "abandoned: pipeline deadline exceeded"


class Transcriber(Protocol):
    async def transcribe(self, tile: ImageTile): ...


def failed_result(tile: ImageTile, message: str, elapsed_ms: int = 0) -> TranscriptionResult:
    return TranscriptionResult(
        page_index=tile.page_index,
        chunk_index=tile.chunk_index,
        succeeded=False,
        error_message=message,
        processing_time_ms=elapsed_ms,
    )


async def dispatch_tiles(
    tiles: Sequence[ImageTile],
    transcriber: Transcriber,
    max_concurrent: int,
    timeout_s: Optional[float] = None,
    on_result: Optional[Callable[[TranscriptionResult, int, int], None]] = None,
) -> List[TranscriptionResult]:
    """Transcribe every tile once, at most ``max_concurrent`` at a time.

    Results come back in the order of ``tiles``. A tile that fails yields a
    result with ``succeeded=False``; it never stops its siblings. Tiles still
    running when ``timeout_s`` elapses are cancelled and reported as failed.
    """
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
    if not tiles:
        return []

    semaphore = asyncio.Semaphore(max_concurrent)
    total = len(tiles)
    completed = 0

    async def run_one(tile: ImageTile) -> TranscriptionResult:
        nonlocal completed
        async with semaphore:
            start = time.monotonic()
            try:
                response = await transcriber.transcribe(tile)
            except TranscriptionError as e:
                result = failed_result(tile, e.message, int((time.monotonic() - start) * 1000))
            except Exception as e:
                log.exception(f"[{tile.tile_id}] unexpected transcription failure")
                result = failed_result(
                    tile, f"unexpected error: {e}", int((time.monotonic() - start) * 1000)
                )
            else:
                result = TranscriptionResult(
                    page_index=tile.page_index,
                    chunk_index=tile.chunk_index,
                    text=response.text,
                    tokens_used=response.tokens_used,
                    processing_time_ms=int((time.monotonic() - start) * 1000),
                )
        completed += 1
        if on_result:
            on_result(result, completed, total)
        return result

    log.info(f"Dispatching {total} tiles (max {max_concurrent} concurrent)")
    start = time.monotonic()
    tasks = [asyncio.create_task(run_one(tile), name=tile.tile_id) for tile in tiles]

    done, pending = await asyncio.wait(tasks, timeout=timeout_s)
    if pending:
        log.warning(f"Deadline reached, abandoning {len(pending)} of {total} tiles")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    results = []
    for tile, task in zip(tiles, tasks):
        if task in done:
            results.append(task.result())
        else:
            results.append(failed_result(tile, ABANDONED_MESSAGE))

    failed = sum(1 for r in results if not r.succeeded)
    log.info(
        f"Dispatch finished in {time.monotonic() - start:.1f}s: "
        f"{total - failed}/{total} tiles succeeded"
    )
    return results

"""DocumentJob model for OCR processing."""

import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional

from ..config import PipelineConfig
from ..cost_tracker import estimate_cost
from ..dispatcher import ABANDONED_MESSAGE, Transcriber, dispatch_tiles
from ..errors import PipelineError
from ..pdf_handler import (
    DEADLINE_MESSAGE,
    DocumentOpener,
    PdfDocument,
    extract_tiles,
    pages_to_images,
)
from ..processing import join_pages, reassemble_pages
from ..tiling import plan_tiles
from .callbacks import ProcessingCallbacks
from .page_models import (
    ImageTile,
    PipelineResult,
    RasterPage,
    TokenUsage,
    TranscriptionResult,
)

log = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    START = "start"
    RASTERIZING = "rasterizing"
    PLANNING_AND_EXTRACTING = "planning_and_extracting"
    DISPATCHING = "dispatching"
    REASSEMBLING = "reassembling"
    DONE = "done"
    FAILED = "failed"


class DocumentJob:
    """Encapsulates all state and processing logic for a single OCR job."""

    def __init__(
        self,
        job_id: str,
        pdf_bytes: bytes,
        config: PipelineConfig,
        transcriber: Optional[Transcriber] = None,
        opener: DocumentOpener = PdfDocument,
        callbacks: Optional[ProcessingCallbacks] = None,
    ) -> None:
        self.job_id = job_id
        self.pdf_bytes = pdf_bytes
        self.config = config
        self.opener = opener
        self.callbacks = callbacks or ProcessingCallbacks()
        self.stage = PipelineStage.START
        self.errors: List[str] = []
        self.page_images: List[RasterPage] = []
        self.tiles: List[ImageTile] = []
        self.results: List[TranscriptionResult] = []
        self.result: Optional[PipelineResult] = None
        self.deadline_exceeded = False

        if transcriber is None:
            from ..transcriber import VisionTranscriber

            transcriber = VisionTranscriber.from_config(config)
        self.transcriber = transcriber

    def _enter(self, stage: PipelineStage) -> None:
        log.debug(f"Job {self.job_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.callbacks.on_stage_change(self.job_id, stage.value)

    def _record_errors(self, messages: List[str]) -> None:
        for message in messages:
            self.errors.append(message)
            self.callbacks.on_error(self.job_id, message)

    def _deadline(self, started: float) -> Optional[float]:
        budget = self.config.pipeline_timeout_s
        if budget is None:
            return None
        return started + budget

    def _remaining_budget(self, started: float) -> Optional[float]:
        deadline = self._deadline(started)
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def rasterize(self, started: float) -> None:
        self._enter(PipelineStage.RASTERIZING)
        try:
            pages, page_errors = pages_to_images(
                self.pdf_bytes,
                self.config.dpi,
                self.config.max_pages_per_doc,
                opener=self.opener,
                on_page=lambda index, total: self.callbacks.on_page_rasterized(
                    self.job_id, index, total
                ),
                deadline=self._deadline(started),
            )
        except Exception:
            self._enter(PipelineStage.FAILED)
            raise

        self._record_errors(page_errors)
        self.deadline_exceeded = any(DEADLINE_MESSAGE in e for e in page_errors)
        if not pages:
            self._enter(PipelineStage.FAILED)
            raise PipelineError("no pages processed", details={"errors": list(self.errors)})
        self.page_images = pages

    def plan_and_extract(self) -> None:
        self._enter(PipelineStage.PLANNING_AND_EXTRACTING)
        cfg = self.config
        for page in self.page_images:
            rects = plan_tiles(
                page.width,
                page.height,
                cfg.tile_max_side_px,
                cfg.aspect_ratio_split_trigger,
                cfg.tile_overlap_fraction,
            )
            tiles, tile_errors = extract_tiles(page, rects)
            self._record_errors(tile_errors)
            self.tiles.extend(tiles)
            log.info(f"Page {page.page_index + 1}: {len(tiles)} chunks created")
        # Page buffers are no longer needed once tiles exist.
        for page in self.page_images:
            page.image_bytes = b""
        log.info(f"Total chunks across all pages: {len(self.tiles)}")

    async def dispatch(self, started: float) -> None:
        self._enter(PipelineStage.DISPATCHING)
        self.results = await dispatch_tiles(
            self.tiles,
            self.transcriber,
            self.config.max_concurrent_transcriptions,
            timeout_s=self._remaining_budget(started),
            on_result=lambda result, done, total: self.callbacks.on_tile_complete(
                self.job_id, result, done, total
            ),
        )
        self._record_errors(
            [f"{r.tile_id}: {r.error_message}" for r in self.results if not r.succeeded]
        )

    def reassemble(self, started: float) -> PipelineResult:
        self._enter(PipelineStage.REASSEMBLING)
        pages = reassemble_pages(self.results, [p.page_index for p in self.page_images])
        full_text = join_pages(pages)

        usage = sum((r.tokens_used for r in self.results), TokenUsage())
        total_chunks = len(self.tiles)
        successful = sum(1 for r in self.results if r.succeeded)
        timed_out = self.deadline_exceeded or any(
            r.error_message == ABANDONED_MESSAGE for r in self.results
        )

        return PipelineResult(
            full_text=full_text,
            total_pages=len(self.page_images),
            total_chunks=total_chunks,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            tokens_used_total=usage.total,
            success_rate=successful / total_chunks if total_chunks else 0.0,
            errors=list(self.errors),
            successful_chunks=successful,
            input_tokens=usage.input,
            output_tokens=usage.output,
            estimated_cost_usd=estimate_cost(self.config.model_name, usage),
            pages=pages,
            timed_out=timed_out,
        )

    async def run(self) -> PipelineResult:
        """Process the document: pages → tiles → transcription → text."""
        started = time.monotonic()
        log.info(f"Job {self.job_id}: starting OCR ({len(self.pdf_bytes) // 1024}KB PDF)")

        # Rendering and cropping block, so they run off the event loop.
        await asyncio.to_thread(self.rasterize, started)
        await asyncio.to_thread(self.plan_and_extract)
        await self.dispatch(started)
        result = self.reassemble(started)

        self.result = result
        self._enter(PipelineStage.DONE)
        log.info(
            f"Job {self.job_id}: {result.total_pages} pages, {result.total_chunks} chunks, "
            f"{result.successful_chunks} succeeded, {result.tokens_used_total} tokens, "
            f"{len(result.full_text)} characters in {result.processing_time_ms / 1000:.1f}s"
        )
        self.callbacks.on_complete(self.job_id, result)
        return result


async def process_document(
    pdf_bytes: bytes,
    config: PipelineConfig,
    transcriber: Optional[Transcriber] = None,
    opener: DocumentOpener = PdfDocument,
    callbacks: Optional[ProcessingCallbacks] = None,
    job_id: str = "job_0",
) -> PipelineResult:
    """Run a whole document through the pipeline."""
    job = DocumentJob(job_id, pdf_bytes, config, transcriber, opener, callbacks)
    return await job.run()

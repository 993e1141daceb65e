import asyncio
import time

import pytest

from conftest import FakeOpener, FakeTranscriber
from invoice_ocr.errors import PipelineError, RasterizationError
from invoice_ocr.models.callbacks import ProcessingCallbacks
from invoice_ocr.models.document_job import DocumentJob, PipelineStage, process_document
from invoice_ocr.processing import PAGE_BREAK


def run(config, sizes, transcriber=None, failing_pages=(), callbacks=None):
    job = DocumentJob(
        "job_test",
        b"%PDF-1.4",
        config,
        transcriber=transcriber or FakeTranscriber(),
        opener=FakeOpener(sizes, failing_pages),
        callbacks=callbacks,
    )
    return job, asyncio.run(job.run())


def test_single_small_page(config):
    job, result = run(config, [(1000, 1400)])

    assert result.total_pages == 1
    assert result.total_chunks == 1
    assert result.success_rate == 1.0
    assert result.errors == []
    assert result.full_text == "text p1c1"
    assert result.tokens_used_total == 110
    assert result.estimated_cost_usd > 0
    assert job.stage is PipelineStage.DONE


def test_multi_page_document_is_split_and_reassembled(config):
    _, result = run(config, [(1275, 3300), (4096, 1200)])

    assert result.total_pages == 2
    assert result.total_chunks == 2 + 3
    assert result.full_text == (
        "text p1c1\ntext p1c2" + PAGE_BREAK + "text p2c1\ntext p2c2\ntext p2c3"
    )
    assert [p.chunk_count for p in result.pages] == [2, 3]
    assert result.average_chunks_per_page == 2.5


def test_one_failing_tile_gives_partial_result(config):
    transcriber = FakeTranscriber(failing={"p2c2"})
    _, result = run(config, [(1000, 1000), (1275, 3300), (1000, 1000)], transcriber)

    assert result.total_chunks == 4
    assert result.successful_chunks == 3
    assert result.success_rate == 0.75
    assert len(result.errors) == 1
    assert result.errors[0].startswith("p2c2:")
    for tile_id in ("p1c1", "p2c1", "p3c1"):
        assert f"text {tile_id}" in result.full_text
    assert "p2c2" not in result.full_text


def test_no_pages_is_fatal(config):
    with pytest.raises(PipelineError, match="no pages processed"):
        run(config, [(1000, 1000)], failing_pages={0})


def test_empty_document_is_fatal(config):
    with pytest.raises(PipelineError):
        run(config, [])


def test_unreadable_document_fails_the_job(config):
    def opener(pdf_bytes):
        raise RasterizationError("Failed to read PDF metadata")

    job = DocumentJob("job_bad", b"junk", config, FakeTranscriber(), opener=opener)

    with pytest.raises(RasterizationError):
        asyncio.run(job.run())
    assert job.stage is PipelineStage.FAILED


def test_failing_middle_page_is_skipped(config):
    _, result = run(config, [(1000, 1000)] * 3, failing_pages={1})

    assert result.total_pages == 2
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Page 2:")
    assert result.success_rate == 1.0
    assert result.full_text == "text p1c1" + PAGE_BREAK + "text p3c1"


def test_all_tiles_failing_is_still_a_result(config):
    transcriber = FakeTranscriber(failing={"p1c1"})
    _, result = run(config, [(500, 500)], transcriber)

    assert result.success_rate == 0.0
    assert result.full_text == ""
    assert len(result.errors) == 1


def test_page_cap_limits_work(config):
    config.max_pages_per_doc = 2
    _, result = run(config, [(500, 500)] * 4)

    assert result.total_pages == 2


def test_concurrency_limit_is_honoured(config):
    config.max_concurrent_transcriptions = 3
    transcriber = FakeTranscriber(max_delay=0.01)
    run(config, [(1000, 9000)] * 4, transcriber)

    assert len(transcriber.calls) == 4 * 5
    assert transcriber.max_in_flight <= 3


def test_pipeline_deadline_returns_partial_result(config):
    class Stuck(FakeTranscriber):
        async def transcribe(self, tile):
            if tile.page_index == 1:
                await asyncio.sleep(30)
            return await super().transcribe(tile)

    config.pipeline_timeout_ms = 300
    _, result = run(config, [(500, 500), (500, 500)], Stuck())

    assert result.timed_out
    assert result.successful_chunks == 1
    assert result.full_text == "text p1c1" + PAGE_BREAK
    assert "deadline" in result.errors[0]


def test_callbacks_report_progress(config):
    events = []
    callbacks = ProcessingCallbacks(
        on_stage_change=lambda job_id, stage: events.append(stage),
        on_page_rasterized=lambda job_id, index, total: events.append(f"page {index}/{total}"),
        on_tile_complete=lambda job_id, result, done, total: events.append(f"tile {done}/{total}"),
        on_error=lambda job_id, message: events.append("error"),
        on_complete=lambda job_id, result: events.append("complete"),
    )

    run(config, [(500, 500)] * 2, failing_pages={1}, callbacks=callbacks)

    assert events == [
        "rasterizing",
        "page 0/2",
        "error",
        "planning_and_extracting",
        "dispatching",
        "tile 1/1",
        "reassembling",
        "done",
        "complete",
    ]


def test_process_document_helper(config):
    result = asyncio.run(
        process_document(
            b"%PDF-1.4",
            config,
            transcriber=FakeTranscriber(),
            opener=FakeOpener([(800, 600)]),
        )
    )
    assert result.full_text == "text p1c1"


def test_slow_rendering_does_not_block_the_event_loop(config):
    job = DocumentJob(
        "job_slow",
        b"%PDF-1.4",
        config,
        FakeTranscriber(),
        opener=FakeOpener([(500, 500)] * 3, render_delay=0.4),
    )

    async def run_with_caller_timeout():
        start = time.monotonic()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(job.run(), 0.3)
        return time.monotonic() - start

    elapsed = asyncio.run(run_with_caller_timeout())

    assert elapsed < 0.8


def test_deadline_stops_rasterization(config):
    config.pipeline_timeout_ms = 300
    opener = FakeOpener([(500, 500)] * 3, render_delay=0.5)
    job = DocumentJob("job_late", b"%PDF-1.4", config, FakeTranscriber(), opener=opener)

    result = asyncio.run(job.run())

    assert opener.document.rendered == [0]
    assert result.total_pages == 1
    assert result.timed_out
    assert result.errors[0] == "Pages 2-3: skipped, pipeline deadline exceeded"
    assert job.stage is PipelineStage.DONE

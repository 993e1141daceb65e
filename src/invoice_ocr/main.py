"""
Command line entry point: run a PDF through the OCR pipeline.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import PipelineConfig
from .errors import DocumentLoadError, OCRError, PipelineError, RasterizationError
from .models.document_job import process_document
from .models.page_models import PipelineResult
from .pdf_handler import load_document

log = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging() -> None:
    log_level = (
        logging.DEBUG if os.environ.get("OCR_DEBUG", "").lower() == "true" else logging.INFO
    )
    log_file = os.environ.get("OCR_LOG_FILE")
    if log_file:
        logging.basicConfig(
            level=log_level,
            filename=log_file,
            filemode="w",
            format=LOG_FORMAT,
            datefmt=LOG_DATE_FORMAT,
        )
    else:
        logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def error_code_for(error: Optional[Exception], result: Optional[PipelineResult] = None) -> Optional[str]:
    """Map a pipeline outcome to a user-facing error code, or None on success."""
    if error is None:
        if result is None or result.successful_chunks > 0:
            return None
        return "TIMEOUT" if result.timed_out else "OCR_FAILED"
    if isinstance(error, (RasterizationError, DocumentLoadError)):
        return "PDF_CORRUPTED"
    if isinstance(error, PipelineError):
        return "OCR_FAILED"
    return "PROCESSING_ERROR"


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="invoice-ocr",
        description="Extract the text of a PDF invoice with a vision language model.",
    )
    p.add_argument("source", help="PDF path, file:// URL, data: URI or http(s) URL.")
    p.add_argument("-o", "--output", type=Path, help="Write the document text here.")
    p.add_argument(
        "--json", action="store_true", help="Print the full result as JSON."
    )
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file (environment variables are used when omitted).",
    )
    p.add_argument("--dpi", type=int, help="Rasterization resolution.")
    p.add_argument("--max-pages", type=int, help="Maximum pages to process.")
    p.add_argument("--concurrency", type=int, help="Maximum parallel vision calls.")
    p.add_argument("--model", help="Vision model name.")
    return p


def _overrides(args: argparse.Namespace) -> dict:
    overrides = {
        "dpi": args.dpi,
        "max_pages_per_doc": args.max_pages,
        "max_concurrent_transcriptions": args.concurrency,
        "model_name": args.model,
    }
    return {k: v for k, v in overrides.items() if v is not None}


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_arg_parser().parse_args(argv)

    try:
        if args.config:
            config = PipelineConfig.load(
                args.config,
                api_key=os.environ.get("OPENAI_API_KEY"),
                **_overrides(args),
            )
        else:
            config = PipelineConfig.from_env(**_overrides(args))
        pdf_bytes = load_document(args.source)
        result = asyncio.run(process_document(pdf_bytes, config))
    except OCRError as e:
        code = error_code_for(e)
        log.error(f"{code}: {e}")
        print(json.dumps({"status": "error", "code": code, "error": str(e)}))
        return 1

    code = error_code_for(None, result)

    if args.output:
        args.output.write_text(result.full_text, encoding="utf-8")
        log.info(f"Wrote {len(result.full_text)} characters to {args.output}")

    if args.json:
        payload = {"status": "error" if code else "success", "code": code}
        payload.update(result.to_dict(include_text=not args.output))
        print(json.dumps(payload, indent=2))
    elif not args.output:
        print(result.full_text)

    log.info(
        f"Pages: {result.total_pages}, chunks: {result.total_chunks}, "
        f"success rate: {result.success_rate:.0%}, tokens: {result.tokens_used_total}, "
        f"est. cost: ${result.estimated_cost_usd:.4f}"
    )
    for error in result.errors:
        log.warning(error)
    return 1 if code else 0


if __name__ == "__main__":
    sys.exit(main())

"""Vision model transcription of single tiles."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, cast

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)
from openai.types.chat import ChatCompletionMessageParam

from .config import PipelineConfig
from .errors import TranscriptionError
from .models.page_models import ImageTile, TokenUsage
from .processing import (
    build_messages,
    clean_text_output,
    estimate_image_tokens,
    estimate_text_tokens,
)

log = logging.getLogger(__name__)

MIN_SERVER_ERROR_CODE = 500
# Client errors that still clear up on their own.
TRANSIENT_CLIENT_CODES = {408, 429}


@dataclass(frozen=True)
class VisionResponse:
    text: str
    tokens_used: TokenUsage


class VisionBackend(Protocol):
    async def complete(
        self, image_bytes: bytes, instruction: str, timeout_s: float
    ) -> VisionResponse: ...


def is_transient_status(status_code: int) -> bool:
    return status_code >= MIN_SERVER_ERROR_CODE or status_code in TRANSIENT_CLIENT_CODES


class OpenAIVisionBackend:
    """Chat completions backend for any OpenAI-compatible vision model."""

    def __init__(self, config: PipelineConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        if client is None:
            # Retries are handled by VisionTranscriber, not the SDK.
            client = AsyncOpenAI(
                base_url=config.api_base_url,
                api_key=config.require_api_key(),
                timeout=config.transcription_timeout_s,
                max_retries=0,
            )
        self.client = client
        log.info(
            f"Vision backend ready: model={config.model_name}, "
            f"base_url={config.api_base_url or 'default'}, "
            f"timeout={config.transcription_timeout_s}s"
        )

    async def complete(
        self, image_bytes: bytes, instruction: str, timeout_s: float
    ) -> VisionResponse:
        messages = build_messages(instruction, image_bytes, self.config.detail_mode)
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.config.model_name,
                    messages=cast(List[ChatCompletionMessageParam], messages),
                    max_tokens=self.config.max_output_tokens,
                    temperature=self.config.temperature,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, APITimeoutError) as e:
            raise TranscriptionError(
                f"Vision API request timed out after {timeout_s}s", transient=True
            ) from e
        except APIConnectionError as e:
            raise TranscriptionError(
                f"Could not reach vision API: {e}", transient=True
            ) from e
        except APIStatusError as e:
            raise TranscriptionError(
                f"Vision API error {e.status_code}: {e.message}",
                transient=is_transient_status(e.status_code),
                status_code=e.status_code,
            ) from e

        if not getattr(response, "choices", None):
            raise TranscriptionError("Malformed vision API response: no choices")
        message = response.choices[0].message
        content = message.content if message is not None else None
        if content is not None and not isinstance(content, str):
            raise TranscriptionError("Malformed vision API response: non-text content")

        text = clean_text_output(content or "")
        usage = getattr(response, "usage", None)
        if usage is not None:
            tokens = TokenUsage(
                input=usage.prompt_tokens or 0, output=usage.completion_tokens or 0
            )
        else:
            tokens = TokenUsage(output=estimate_text_tokens(text))
        return VisionResponse(text=text, tokens_used=tokens)


class VisionTranscriber:
    """Transcribe tiles through a backend, retrying transient failures.

    Every failed attempt is retried up to ``max_retries`` times with a fixed
    ``retry_backoff_ms`` pause, but only when the failure is transient. An
    empty transcription is a valid result.
    """

    def __init__(self, backend: VisionBackend, config: PipelineConfig):
        self.backend = backend
        self.config = config

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "VisionTranscriber":
        return cls(OpenAIVisionBackend(config), config)

    async def transcribe(self, tile: ImageTile) -> VisionResponse:
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            start = time.monotonic()
            try:
                response = await self.backend.complete(
                    tile.image_bytes,
                    self.config.instruction,
                    self.config.transcription_timeout_s,
                )
            except TranscriptionError as e:
                if not e.transient:
                    log.error(f"[{tile.tile_id}] {e} (not retrying)")
                    raise

                if attempt < attempts - 1:
                    wait_time = self.config.retry_backoff_s
                    log.warning(
                        f"[{tile.tile_id}] {e}, retry {attempt + 1}/{self.config.max_retries} "
                        f"(waiting {wait_time}s)"
                    )
                    await asyncio.sleep(wait_time)
                    continue

                log.error(f"[{tile.tile_id}] failed after {attempts} attempts: {e}")
                raise TranscriptionError(
                    f"{e.message} (after {attempts} attempts)",
                    transient=True,
                    status_code=e.status_code,
                ) from e

            tokens = response.tokens_used
            if tokens.input == 0:
                width, height = tile.dimensions
                tokens = TokenUsage(estimate_image_tokens(width, height), tokens.output)
                response = VisionResponse(response.text, tokens)

            log.debug(
                f"[{tile.tile_id}] extracted {len(response.text)} characters "
                f"({tokens.total} tokens, {int((time.monotonic() - start) * 1000)}ms)"
            )
            return response

"""Configuration for the invoice OCR pipeline."""

import json
import os
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

CONFIG_FILE_PATH = Path.home() / ".config" / "invoice-ocr" / "invoice-ocr.json"

DEFAULT_INSTRUCTION = (
    "Extract all text from this image. Preserve the original formatting, "
    "spacing, and layout as much as possible. Include all visible text "
    "including headers, footers, tables, and any annotations. Return only "
    "the extracted text with no additional commentary."
)

# (environment variable, field name, parser)
_ENV_FIELDS = [
    ("OPENAI_API_KEY", "api_key", str),
    ("OPENAI_BASE_URL", "api_base_url", str),
    ("OPENAI_MODEL_NAME", "model_name", str),
    ("OPENAI_TIMEOUT_SECONDS", "transcription_timeout_ms", lambda v: int(float(v) * 1000)),
    ("MAX_VISION_RETRIES", "max_retries", int),
    ("RETRY_BACKOFF_SECONDS", "retry_backoff_ms", lambda v: int(float(v) * 1000)),
    ("PDF_DPI", "dpi", int),
    ("MAX_PAGES_PER_DOC", "max_pages_per_doc", int),
    ("LONG_SIDE_MAX_PX", "tile_max_side_px", int),
    ("ASPECT_TRIGGER", "aspect_ratio_split_trigger", float),
    ("OVERLAP_PCT", "tile_overlap_fraction", float),
    ("MAX_PARALLEL_VISION_CALLS", "max_concurrent_transcriptions", int),
    ("PIPELINE_TIMEOUT_SECONDS", "pipeline_timeout_ms", lambda v: int(float(v) * 1000)),
]

# Never written to disk by save().
_SECRET_FIELDS = {"api_key"}


class PipelineConfig(BaseModel):
    """Every knob the pipeline reads, passed explicitly into a job."""

    # PDF processing
    dpi: int = Field(default=150, gt=0)
    max_pages_per_doc: int = Field(default=50, gt=0)

    # Image tiling
    tile_max_side_px: int = Field(default=2048, gt=0)
    aspect_ratio_split_trigger: float = Field(default=2.7, gt=0)
    tile_overlap_fraction: float = Field(default=0.05, gt=0, lt=1)

    # Concurrency and timing
    max_concurrent_transcriptions: int = Field(default=5, gt=0)
    transcription_timeout_ms: int = Field(default=90_000, gt=0)
    max_retries: int = Field(default=1, ge=0)
    retry_backoff_ms: int = Field(default=2_000, ge=0)
    pipeline_timeout_ms: Optional[int] = Field(default=300_000, gt=0)

    # Vision model
    api_base_url: Optional[str] = None
    api_key: Optional[str] = Field(default=None, repr=False)
    model_name: str = "gpt-4o"
    detail_mode: Literal["low", "high"] = "high"
    max_output_tokens: int = Field(default=4096, gt=0)
    temperature: float = Field(default=0.1, ge=0, le=2)
    instruction: str = DEFAULT_INSTRUCTION

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("model_name", "instruction")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @classmethod
    def build(cls, **values) -> "PipelineConfig":
        """Construct a config, reporting bad values as ConfigError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid pipeline configuration: {e}") from e

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides
    ) -> "PipelineConfig":
        """Read settings from environment variables; overrides win."""
        environ = os.environ if environ is None else environ
        values = {}
        for env_name, field_name, parse in _ENV_FIELDS:
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = parse(raw)
            except ValueError as e:
                raise ConfigError(
                    f"Environment variable {env_name} has invalid value {raw!r}"
                ) from e
        values.update(overrides)
        return cls.build(**values)

    @property
    def transcription_timeout_s(self) -> float:
        return self.transcription_timeout_ms / 1000

    @property
    def retry_backoff_s(self) -> float:
        return self.retry_backoff_ms / 1000

    @property
    def pipeline_timeout_s(self) -> Optional[float]:
        if self.pipeline_timeout_ms is None:
            return None
        return self.pipeline_timeout_ms / 1000

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError(
                "OPENAI_API_KEY is not set. "
                "Please set it with: export OPENAI_API_KEY='your-api-key'"
            )
        return self.api_key

    def save(self, path: Path = CONFIG_FILE_PATH) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude=_SECRET_FIELDS)
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def load(cls, path: Path = CONFIG_FILE_PATH, **overrides) -> "PipelineConfig":
        """Load configuration from JSON file, falling back to defaults."""
        data = {}
        if path.exists():
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Config file {path} is not valid JSON") from e
        for key in _SECRET_FIELDS:
            data.pop(key, None)
        data.update(overrides)
        return cls.build(**data)

import os
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from abt.config.quality import DEFAULT_BITRATE, QualityDirective, parse_quality

MAX_POOL_SIZE = 8
# Fixed: the encoder arguments and the output validator both target MP3
OUTPUT_EXTENSION = ".mp3"


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def default_pool_size(cpu_count: Optional[int] = None) -> int:
    """Three quarters of the detected cores, clamped to [1, MAX_POOL_SIZE]."""
    if cpu_count is None:
        cpu_count = os.cpu_count() or 4
    return max(1, min(MAX_POOL_SIZE, cpu_count * 3 // 4))


class GeneralConfig(BaseModel):
    bitrate: str = DEFAULT_BITRATE
    threads: Optional[int] = Field(default=None, gt=0)
    debug: bool = False
    log_path: Optional[str] = None
    encoder: str = "ffmpeg"
    # File names to consider; content must still carry the FLAC signature
    source_extensions: List[str] = Field(default_factory=lambda: [".flac"])
    min_output_bytes: int = Field(default=1024, ge=0)
    output_size_ratio: float = Field(default=0.40, gt=0.0, le=1.0)
    safety_margin: float = Field(default=0.10, ge=0.0)
    lock_timeout_s: float = Field(default=5.0, gt=0)
    lock_poll_s: float = Field(default=0.1, gt=0)
    lock_stale_s: float = Field(default=5.0, gt=0)
    progress_interval_s: float = Field(default=2.0, gt=0)
    eta_warmup_s: float = Field(default=2.0, ge=0)

    @field_validator("bitrate")
    @classmethod
    def validate_bitrate(cls, v: str) -> str:
        parse_quality(v)
        return v

    @field_validator("source_extensions")
    @classmethod
    def validate_source_extensions(cls, v: List[str]) -> List[str]:
        normalized = [_normalize_extension(ext) for ext in v if ext.strip()]
        if not normalized:
            raise ValueError("source_extensions must not be empty")
        return normalized

    @model_validator(mode="after")
    def validate_sources_are_not_outputs(self):
        if OUTPUT_EXTENSION in self.source_extensions:
            raise ValueError(f"source_extensions must not include the output extension {OUTPUT_EXTENSION}")
        return self


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)


class RunConfig(BaseModel):
    """Everything one run needs, resolved once and shared read-only by all components."""
    model_config = ConfigDict(frozen=True)

    source_root: Path
    dest_root: Path
    quality: QualityDirective
    overwrite: bool = False
    dry_run: bool = False
    pool_size: int = Field(default=1, ge=1)
    encoder: str = "ffmpeg"
    source_extensions: List[str] = Field(default_factory=lambda: [".flac"])
    min_output_bytes: int = 1024
    output_size_ratio: float = 0.40
    safety_margin: float = 0.10
    lock_timeout_s: float = 5.0
    lock_poll_s: float = 0.1
    lock_stale_s: float = 5.0
    progress_interval_s: float = 2.0
    eta_warmup_s: float = 2.0
    debug: bool = False

    @classmethod
    def from_app_config(
        cls,
        config: AppConfig,
        source_root: Path,
        dest_root: Path,
        overwrite: bool = False,
        dry_run: bool = False,
        cpu_count: Optional[int] = None,
    ) -> "RunConfig":
        general = config.general
        return cls(
            source_root=source_root,
            dest_root=dest_root,
            quality=parse_quality(general.bitrate),
            overwrite=overwrite,
            dry_run=dry_run,
            pool_size=general.threads or default_pool_size(cpu_count),
            encoder=general.encoder,
            source_extensions=general.source_extensions,
            min_output_bytes=general.min_output_bytes,
            output_size_ratio=general.output_size_ratio,
            safety_margin=general.safety_margin,
            lock_timeout_s=general.lock_timeout_s,
            lock_poll_s=general.lock_poll_s,
            lock_stale_s=general.lock_stale_s,
            progress_interval_s=general.progress_interval_s,
            eta_warmup_s=general.eta_warmup_s,
            debug=general.debug,
        )

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_EXTENSIONS = [".mp4", ".mkv", ".mov", ".avi", ".m4v", ".ts", ".mts", ".m2ts", ".webm"]


def _dotted(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


class GeneralConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    threads: Optional[int] = Field(default=None, gt=0)  # None = detect from GPU
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    min_size_bytes: int = Field(default=0, ge=0)
    clean_transient: bool = True
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [_dotted(ext) for ext in v]


class EncoderConfig(BaseModel):
    """Target format and ffmpeg encoder settings."""
    model_config = ConfigDict(validate_assignment=True)

    codec: str = "av1"  # codec_name as reported by ffprobe
    encoder: str = "av1_nvenc"
    height: int = Field(default=1080, gt=0)
    cq: int = Field(default=30, ge=0, le=63)
    preset: str = "p5"
    output_extension: str = ".mp4"
    audio_codec: str = "aac"
    audio_bitrate: str = "320k"
    duration_tolerance_s: float = Field(default=5.0, ge=0.0)

    @field_validator("output_extension")
    @classmethod
    def normalize_output_extension(cls, v: str) -> str:
        return _dotted(v)


class NamingConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    backup_prefix: str = Field(default="OLD_", min_length=1)
    transient_prefix: str = Field(default="TMP_", min_length=1)
    marker_extension: str = ".edl"
    chapter_extension: str = ".ffmeta"

    @field_validator("marker_extension", "chapter_extension")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        return _dotted(v)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    naming: NamingConfig = Field(default_factory=NamingConfig)


class JobSettings(BaseModel):
    """Immutable per-run snapshot handed to every job at admission."""
    model_config = ConfigDict(frozen=True)

    codec: str
    encoder: str
    height: int
    cq: int
    preset: str
    output_extension: str
    audio_codec: str
    audio_bitrate: str
    duration_tolerance_s: float
    backup_prefix: str
    transient_prefix: str
    marker_extension: str
    chapter_extension: str
    debug: bool = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "JobSettings":
        return cls(
            **config.encoder.model_dump(),
            **config.naming.model_dump(),
            debug=config.general.debug,
        )

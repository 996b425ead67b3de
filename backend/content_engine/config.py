"""Application configuration."""
from pathlib import Path
from typing import Dict, List, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # App settings
    app_name: str = "Content Engine"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/content_engine.db"

    # Data directories
    data_dir: Path = Path("./data")
    media_dir: Path = Path("./data/media")

    # Ingestion
    max_upload_bytes: int = 2 * 1024 * 1024 * 1024  # 2 GiB
    upload_chunk_bytes: int = 1024 * 1024
    allowed_upload_types: List[str] = [
        "video/mp4",
        "video/quicktime",
        "video/x-msvideo",
        "video/webm",
        "video/x-matroska",
    ]

    # Clip bounds
    min_clip_seconds: float = 15.0
    max_clip_seconds: float = 60.0

    # Virality analysis
    max_clips: int = 10  # Clips persisted per analysis run
    max_candidates: int = 20  # Top-K kept after de-duplication
    min_hook_score: float = 40.0  # Windows with a weaker hook are dropped
    hook_window_seconds: float = 3.0
    min_pause_seconds: float = 0.5  # Inter-word gap that counts as a boundary
    overlap_policy: Literal["strict", "iou"] = "strict"
    overlap_iou_threshold: float = 0.3
    virality_weights: Dict[str, float] = {
        "hook": 0.2,
        "emotion": 0.2,
        "insight": 0.2,
        "cta": 0.2,
        "quality": 0.2,
    }

    # Pipeline coordinator
    pipeline_poll_interval_seconds: float = 2.0
    stage_timeout_seconds: float = 300.0
    pipeline_max_concurrent_videos: int = 4
    provider_max_attempts: int = 3
    provider_backoff_seconds: float = 1.0

    # Publish dispatcher
    dispatch_interval_seconds: float = 60.0
    dispatch_batch_size: int = 50
    dispatch_claim_timeout_seconds: float = 600.0
    publish_timeout_seconds: float = 120.0
    publish_max_retries: int = 3
    publish_retry_backoff_seconds: float = 60.0
    publish_endpoints: Dict[str, str] = {}

    # Background scheduling
    scheduler_enabled: bool = True

    # OpenAI (transcription + titles)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"
    transcription_timeout_seconds: float = 240.0
    title_model: str = "gpt-4o-mini"
    title_timeout_seconds: float = 20.0

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    normalize_video_codec: str = "libx264"
    normalize_video_preset: str = "veryfast"
    normalize_video_crf: int = 23
    normalize_audio_codec: str = "aac"
    normalize_audio_bitrate: str = "128k"
    transcription_audio_bitrate: str = "64k"  # Keeps long videos under the provider upload limit
    export_video_codec: str = "libx264"
    export_video_preset: str = "medium"
    export_video_crf: int = 23
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "128k"

    # yt-dlp settings
    ytdlp_path: str = "yt-dlp"

    # Frontend
    frontend_url: str = "http://localhost:5173"
    cors_origins: List[str] = ["http://127.0.0.1:5173", "http://localhost:3000"]


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.media_dir.mkdir(parents=True, exist_ok=True)

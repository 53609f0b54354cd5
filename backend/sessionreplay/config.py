"""Application configuration using Pydantic settings."""
from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3100
    environment: str = "development"
    log_level: Optional[str] = None

    # CORS
    allowed_origins: str = "*"

    # Redis (for ARQ worker)
    redis_url: str = "redis://127.0.0.1:6379"

    # Storage layout
    data_dir: Path = Path("data")
    public_base_path: str = ""
    strict_validation: bool = False

    # Video Generation Settings
    video_resolution_width: int = 1920
    video_resolution_height: int = 1080
    replay_event_delay_ms: int = 50
    replay_timing: Literal["fixed", "recorded"] = "fixed"
    replay_max_gap_ms: int = 2000
    render_page_timeout_ms: int = 30000
    max_concurrent_renders: int = 2
    render_queue_timeout_seconds: float = 30.0
    render_max_attempts: int = 2
    render_retry_after_seconds: int = 10
    render_job_timeout_seconds: int = 600
    render_on_complete: bool = False
    invalidate_stale_artifacts: bool = False
    ffmpeg_path: str = "ffmpeg"
    thumbnail_width: int = 320

    # Capture uploader
    upload_interval_seconds: float = 5.0
    upload_batch_size: int = 500

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    @property
    def videos_dir(self) -> Path:
        return self.data_dir / "videos"

    @property
    def thumbnails_dir(self) -> Path:
        return self.data_dir / "thumbnails"

    @property
    def recordings_dir(self) -> Path:
        return self.data_dir / "recordings"

    @property
    def render_work_dir(self) -> Path:
        return self.data_dir / "render-work"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Video API"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    JWT_SECRET_KEY: str = "JWT_SECRET_KEY"

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "video_platform_db"

    # Cache
    REDIS_URL: str = "redis://localhost:6379/0"
    VIDEO_CACHE_TTL: int = 600
    JOB_STATE_TTL: int = 3600

    # Storage
    UPLOAD_ROOT: Path = Path("uploads")
    PUBLIC_URL_PREFIX: str = "/uploads"
    MAX_PAYLOAD_BYTES: int = 500 * 1024 * 1024
    MAX_FILES: int = 2
    STAGING_CHUNK_SIZE: int = 1024 * 1024

    # Media tools
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"
    PROBE_TIMEOUT: float = 30.0
    TRANSCODE_TIMEOUT: float = 1800.0
    THUMBNAIL_TIMEOUT: float = 60.0

    DISCONNECT_POLL_INTERVAL: float = 1.0

    class Config:
        env_file = ".env"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()

"""Service configuration.

Values come from environment variables or a .env file. Every setting has a
default that runs the service on one machine without Redis, S3 or Celery.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings for the upload, transcoding and relay services."""

    # Application
    PROJECT_NAME: str = "vodstream"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    LOG_JSON: bool = True

    # Redis - optional, an in-process store is used when empty
    REDIS_URL: str = ""

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # Chunked uploads
    UPLOAD_DIR: str = "./uploads"
    UPLOAD_SESSION_TTL_SECONDS: int = 24 * 60 * 60
    MAX_CHUNK_SIZE: int = 10 * 1024 * 1024  # 10 MB
    UPLOAD_LOCK_TIMEOUT_SECONDS: float = 60.0  # renewed while held
    UPLOAD_LOCK_WAIT_SECONDS: float = 30.0
    UPLOAD_SWEEP_INTERVAL_SECONDS: int = 60 * 60  # 0 disables the in-process sweep

    # Transcoding
    OUTPUT_DIR: str = "./output"
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    HLS_SEGMENT_DURATION: int = 6
    TRANSCODE_TIMEOUT_SECONDS: float = 300.0
    SERVE_ORIGINAL_ON_FAILURE: bool = False

    # Playlist relay
    RELAY_PATH: str = "/api/hls-proxy"
    RELAY_FETCH_TIMEOUT_SECONDS: float = 10.0

    # Blob Store: local, s3 or minio
    STORAGE_BACKEND: str = "local"

    # local: files are written here and served at STORAGE_PUBLIC_URL
    LOCAL_STORAGE_PATH: str = "./storage"
    STORAGE_PUBLIC_URL: str = "/streams"

    # s3 / minio
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # MinIO or other S3-compatible endpoint
    STORAGE_USE_SSL: bool = True

    # Published URLs use the CDN host when enabled
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Celery; falls back to REDIS_URL, then the in-memory broker
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()

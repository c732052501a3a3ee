"""Blob Store for published HLS output and original uploads.

Backends: a local directory served by the application under
``STORAGE_PUBLIC_URL``, or any S3-compatible bucket (AWS S3, MinIO).
HLS players fetch nested playlists and segments by path relative to the
master playlist, so published URLs are stable and unsigned. Playlists are
published with ``no-cache`` and segments as immutable.
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from starlette.responses import Response
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from vodstream.core.config import settings
from vodstream.core.metrics import STORAGE_UPLOADS_TOTAL

logger = logging.getLogger(__name__)

PLAYLIST_CACHE_CONTROL = "no-cache"
SEGMENT_CACHE_CONTROL = "public, max-age=31536000"

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
}


def guess_content_type(name: str) -> str:
    return CONTENT_TYPES.get(Path(name).suffix.lower(), "application/octet-stream")


def cache_control_for(name: str) -> str:
    """Playlists change between runs; segment names are never reused."""
    if name.lower().endswith(".m3u8"):
        return PLAYLIST_CACHE_CONTROL
    return SEGMENT_CACHE_CONTROL


class HLSStaticFiles(StaticFiles):
    """Static files for the local backend, with the same headers S3 stores."""

    def file_response(self, full_path, stat_result, scope: Scope, status_code: int = 200) -> Response:
        response = super().file_response(full_path, stat_result, scope, status_code)
        response.headers["Cache-Control"] = cache_control_for(str(full_path))
        if response.status_code != 304 and Path(str(full_path)).suffix.lower() in CONTENT_TYPES:
            response.headers["Content-Type"] = guess_content_type(str(full_path))
        return response


@dataclass
class StorageResult:
    """Outcome of publishing one file."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, key: str, error: Exception) -> "StorageResult":
        return cls(success=False, key=key, url="", error_message=str(error))


@dataclass
class StorageConfig:
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    public_url: str = "/streams"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            public_url=settings.STORAGE_PUBLIC_URL,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
        )

    @property
    def cdn_base(self) -> Optional[str]:
        if self.cdn_enabled and self.cdn_domain:
            return f"https://{self.cdn_domain}"
        return None


class StorageBackend(ABC):
    """A place published files can be written to and served from."""

    def __init__(self, config: StorageConfig):
        self.config = config

    @abstractmethod
    def upload(self, file_path: str, key: str, content_type: str, cache_control: Optional[str]) -> StorageResult:
        """Publish a local file under ``key``. Failures are returned, not raised."""

    @abstractmethod
    def download(self, key: str, destination: str) -> bool:
        """Copy ``key`` to a local path. Returns False if it does not exist."""

    @abstractmethod
    def _origin_url(self, key: str) -> str:
        pass

    def get_url(self, key: str) -> str:
        cdn = self.config.cdn_base
        return f"{cdn}/{key}" if cdn else self._origin_url(key)


class LocalStorage(StorageBackend):
    """Files under ``local_path``, served by the app at ``public_url``."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_path / key

    def upload(self, file_path, key, content_type, cache_control=None):
        # HLSStaticFiles sets the headers when the file is served.
        dest = self._path(key)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, dest)
        except OSError as e:
            return StorageResult.failed(key, e)
        return StorageResult(success=True, key=key, url=self.get_url(key), file_size=dest.stat().st_size)

    def download(self, key, destination):
        source = self._path(key)
        if not source.is_file():
            return False
        shutil.copyfile(source, destination)
        return True

    def _origin_url(self, key):
        return f"{self.config.public_url.rstrip('/')}/{key}"


class S3Storage(StorageBackend):
    """S3 or MinIO bucket. The boto3 client is created on first use."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            kwargs = {
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }
            if self.config.endpoint_url:
                # MinIO and most S3-compatible servers need path-style addressing.
                kwargs["endpoint_url"] = self.config.endpoint_url
                kwargs["use_ssl"] = self.config.use_ssl
                kwargs["config"] = BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"})
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def upload(self, file_path, key, content_type, cache_control=None):
        from botocore.exceptions import BotoCoreError, ClientError

        headers = {"ContentType": content_type}
        if cache_control:
            headers["CacheControl"] = cache_control
        try:
            with open(file_path, "rb") as body:
                response = self._get_client().put_object(
                    Bucket=self.config.bucket, Key=key, Body=body, **headers
                )
            size = os.path.getsize(file_path)
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult.failed(key, e)
        return StorageResult(
            success=True,
            key=key,
            url=self.get_url(key),
            file_size=size,
            etag=response.get("ETag", "").strip('"') or None,
        )

    def download(self, key, destination):
        from botocore.exceptions import ClientError

        try:
            self._get_client().download_file(self.config.bucket, key, destination)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                return False
            raise
        return True

    def _origin_url(self, key):
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        region = self.config.region or "us-east-1"
        return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{key}"


_BACKENDS = {
    "local": LocalStorage,
    "s3": S3Storage,
    "aws": S3Storage,
    "minio": S3Storage,
}


class Storage:
    """Facade over the configured backend."""

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig.from_settings()
        backend_cls = _BACKENDS.get(self.config.backend.lower())
        if backend_cls is None:
            raise ValueError(f"Unsupported storage backend: {self.config.backend}")
        self._backend = backend_cls(self.config)

    @classmethod
    def get_instance(cls) -> "Storage":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _publish(self, path: Path, key: str, content_type: Optional[str] = None) -> StorageResult:
        result = self._backend.upload(
            str(path),
            key,
            content_type or guess_content_type(path.name),
            cache_control_for(path.name),
        )
        outcome = "success" if result.success else "failure"
        STORAGE_UPLOADS_TOTAL.labels(backend=self.config.backend.lower(), outcome=outcome).inc()
        if not result.success:
            logger.warning(
                "Blob Store upload failed",
                extra={"key": key, "error": result.error_message},
            )
        return result

    def upload(self, file_path: str, key: str, content_type: Optional[str] = None) -> StorageResult:
        """Publish a single file."""
        return self._publish(Path(file_path), key, content_type)

    def upload_directory(self, local_dir: str, prefix: str) -> list[StorageResult]:
        """Publish every file under ``local_dir`` as ``prefix/<relative path>``.

        Args:
            local_dir: Directory to upload recursively
            prefix: Key prefix, usually the asset id

        Returns:
            One StorageResult per file, in sorted path order
        """
        root = Path(local_dir)
        prefix = prefix.rstrip("/")
        return [
            self._publish(path, f"{prefix}/{path.relative_to(root).as_posix()}")
            for path in sorted(p for p in root.rglob("*") if p.is_file())
        ]

    def download(self, key: str, destination: str) -> bool:
        return self._backend.download(key, destination)

    def get_url(self, key: str) -> str:
        return self._backend.get_url(key)


def get_storage() -> Storage:
    """Get the process-wide Storage."""
    return Storage.get_instance()

"""Error taxonomy shared by the upload, transcoding and relay modules.

Each error carries an HTTP status code so routers can translate it into an
``HTTPException`` without knowing which component raised it.
"""

from typing import Optional


class ServiceError(Exception):
    """Base exception for service errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InputError(ServiceError):
    """Raised when a request field is missing or malformed."""

    status_code = 400


class NotFoundError(ServiceError):
    """Raised when an asset, session or file does not exist."""

    status_code = 404


class ConflictError(ServiceError):
    """Raised when an operation is already running for the same asset."""

    status_code = 409


class SessionStateError(ServiceError):
    """Raised when an upload session is inconsistent."""

    status_code = 409

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        chunk_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.session_id = session_id
        self.chunk_index = chunk_index


class UpstreamError(ServiceError):
    """Raised when an upstream playlist fetch fails.

    ``upstream_status`` holds the status returned by the upstream server,
    or None when no response was received.
    """

    status_code = 502
    retryable: bool = False

    def __init__(
        self,
        message: str,
        url: str,
        upstream_status: Optional[int] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.url = url
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    """Raised when the upstream fetch exceeded its time budget."""

    status_code = 504
    retryable = True


class NotAPlaylistError(UpstreamError):
    """Raised when the upstream response is not an M3U8 playlist."""

    status_code = 400


class EncodeError(ServiceError):
    """Raised when the encoder fails for a rung. Fatal for the whole job."""

    status_code = 500

    def __init__(self, rung: str, diagnostic: str):
        super().__init__(f"Encoding failed for {rung}: {diagnostic}")
        self.rung = rung
        self.diagnostic = diagnostic


class TranscodeTimeoutError(EncodeError):
    """Raised when a job exceeds its wall-clock budget."""

    status_code = 504


class TranscodeCancelledError(EncodeError):
    """Raised when a job is cancelled while encoding."""

    status_code = 499

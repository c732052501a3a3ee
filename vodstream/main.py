"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from vodstream.core.config import settings
from vodstream.core.logging import setup_logging
from vodstream.core.metrics import get_content_type, get_metrics, set_app_info
from vodstream.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from vodstream.core.redis import close_redis
from vodstream.core.storage import HLSStaticFiles
from vodstream.modules.relay.router import router as relay_router
from vodstream.modules.upload.router import router as upload_router
from vodstream.modules.upload.sessions import sweep_sessions_forever
from vodstream.modules.video.router import router as video_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.UPLOAD_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(sweep_sessions_forever(settings.UPLOAD_SWEEP_INTERVAL_SECONDS))
    yield
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    await close_redis()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## vodstream

Chunked video upload, adaptive-bitrate HLS transcoding and an HLS playlist relay.

* **Upload** - Out-of-order chunked uploads reassembled server-side
* **Processing** - ffmpeg quality ladder with a master playlist
* **Relay** - Same-origin access to upstream HLS playlists
    """,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    openapi_tags=[
        {"name": "upload", "description": "Chunked file upload"},
        {"name": "videos", "description": "Video processing and status"},
        {"name": "relay", "description": "HLS playlist relay"},
    ],
    lifespan=lifespan,
)

setup_logging(
    level="INFO" if not settings.DEBUG else "DEBUG",
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, log_query=True)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(upload_router, prefix=settings.API_PREFIX)
app.include_router(video_router, prefix=settings.API_PREFIX)
app.include_router(relay_router, prefix=settings.API_PREFIX)

if settings.STORAGE_BACKEND.lower() == "local" and settings.STORAGE_PUBLIC_URL.startswith("/"):
    app.mount(
        settings.STORAGE_PUBLIC_URL.rstrip("/"),
        HLSStaticFiles(directory=settings.LOCAL_STORAGE_PATH, check_dir=False),
        name="streams",
    )

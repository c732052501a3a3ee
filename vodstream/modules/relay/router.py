"""HLS relay API router."""

import logging
from typing import Optional
from urllib.parse import quote, urlsplit

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse, Response

from vodstream.core.config import settings
from vodstream.core.errors import UpstreamError
from vodstream.core.logging import log_warning
from vodstream.modules.relay.client import fetch_playlist
from vodstream.modules.relay.rewriter import find_self_reference, rewrite_playlist

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])

PLAYLIST_HEADERS = {
    "Content-Type": "application/vnd.apple.mpegurl",
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-cache",
}


@router.get("/hls-proxy")
async def relay_playlist(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute upstream playlist URL"),
):
    """Fetch an upstream playlist and rewrite its references through the relay."""
    if not url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL parameter is required",
        )

    relay_path = settings.RELAY_PATH
    inner = find_self_reference(url, relay_path)
    if inner is not None:
        log_warning(logger, "Relay URL references the relay itself", url=url, target=inner)
        return RedirectResponse(
            url=str(request.url.replace(query=f"url={quote(inner, safe='')}")),
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
        )

    if urlsplit(url).scheme not in ("http", "https") or not urlsplit(url).netloc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL must be an absolute http(s) URL",
        )

    try:
        playlist = await fetch_playlist(url)
    except UpstreamError as e:
        headers = {"Retry-After": "1"} if e.retryable else None
        raise HTTPException(status_code=e.status_code, detail=e.message, headers=headers)

    body = rewrite_playlist(playlist.text, playlist.url, relay_path)
    return Response(content=body, headers=PLAYLIST_HEADERS)

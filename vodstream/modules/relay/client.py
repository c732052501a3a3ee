"""Upstream playlist fetching for the HLS relay."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from vodstream.core.config import settings
from vodstream.core.errors import (
    NotAPlaylistError,
    UpstreamError,
    UpstreamTimeoutError,
)
from vodstream.core.logging import log_warning
from vodstream.core.metrics import RELAY_FETCH_DURATION_SECONDS, RELAY_FETCHES_TOTAL
from vodstream.modules.relay.playlist import is_playlist_text
from vodstream.modules.relay.rewriter import is_playlist_url

logger = logging.getLogger(__name__)

PLAYLIST_CONTENT_TYPE_MARKERS = ("mpegurl", "m3u8")


@dataclass
class FetchedPlaylist:
    """A playlist body and the URL it was finally served from."""
    text: str
    url: str
    content_type: str = ""


def looks_like_playlist(text: str, content_type: str, url: str) -> bool:
    """Accept a response as M3U8 by header, content type or URL path."""
    content_type = content_type.lower()
    return (
        is_playlist_text(text)
        or any(marker in content_type for marker in PLAYLIST_CONTENT_TYPE_MARKERS)
        or is_playlist_url(url)
    )


async def fetch_playlist(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> FetchedPlaylist:
    """Fetch an upstream playlist.

    Args:
        url: Absolute http(s) playlist URL
        client: Client to use; a short-lived one is created when omitted
        timeout: Fetch budget in seconds, defaults to RELAY_FETCH_TIMEOUT_SECONDS

    Returns:
        FetchedPlaylist with the body text

    Raises:
        UpstreamTimeoutError: If the upstream did not answer in time
        UpstreamError: If the upstream answered non-2xx or the transport failed
        NotAPlaylistError: If the body is not an M3U8 playlist
    """
    timeout = timeout if timeout is not None else settings.RELAY_FETCH_TIMEOUT_SECONDS
    started = time.perf_counter()
    try:
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as owned:
                response = await owned.get(url, timeout=timeout)
        else:
            response = await client.get(url, timeout=timeout)
    except httpx.TimeoutException as e:
        RELAY_FETCHES_TOTAL.labels(outcome="timeout").inc()
        log_warning(logger, "Upstream playlist fetch timed out", url=url)
        raise UpstreamTimeoutError(f"Timed out fetching {url}", url=url) from e
    except httpx.HTTPError as e:
        RELAY_FETCHES_TOTAL.labels(outcome="transport_error").inc()
        log_warning(logger, "Upstream playlist fetch failed", url=url, error=str(e))
        raise UpstreamError(f"Failed to fetch playlist: {e}", url=url) from e
    finally:
        RELAY_FETCH_DURATION_SECONDS.observe(time.perf_counter() - started)

    if not response.is_success:
        RELAY_FETCHES_TOTAL.labels(outcome="upstream_error").inc()
        log_warning(
            logger,
            "Upstream returned an error",
            url=url,
            upstream_status=response.status_code,
        )
        raise UpstreamError(
            f"Failed to fetch playlist: {response.status_code} {response.reason_phrase}",
            url=url,
            upstream_status=response.status_code,
            status_code=response.status_code if response.status_code >= 400 else None,
        )

    content_type = response.headers.get("content-type", "")
    text = response.text
    if not looks_like_playlist(text, content_type, url):
        RELAY_FETCHES_TOTAL.labels(outcome="not_playlist").inc()
        log_warning(
            logger,
            "Upstream response is not an M3U8 playlist",
            url=url,
            content_type=content_type,
        )
        raise NotAPlaylistError(
            "Invalid playlist content - expected M3U8 format", url=url
        )

    RELAY_FETCHES_TOTAL.labels(outcome="success").inc()
    return FetchedPlaylist(text=text, url=str(response.url), content_type=content_type)

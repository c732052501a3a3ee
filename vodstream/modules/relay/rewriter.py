"""Playlist rewriting for the HLS relay.

Nested playlists are routed back through the relay so the player keeps a
single origin. Media segments are resolved to absolute URLs and fetched by
the player directly.
"""

import re
from typing import Optional
from urllib.parse import quote, unquote, urljoin, urlsplit

from vodstream.modules.relay.playlist import (
    PlaylistLine,
    Tag,
    UriReference,
    parse_playlist,
    serialize_playlist,
)

PLAYLIST_EXTENSIONS = (".m3u8", ".m3u")

# Nesting beyond this is treated as malformed rather than unwrapped further.
MAX_UNWRAP_DEPTH = 8

_URL_PARAM_RE = re.compile(r"url=(.+)$")


def is_playlist_url(url: str) -> bool:
    """Check whether a URL names a playlist, judged by its path only."""
    return urlsplit(url).path.lower().endswith(PLAYLIST_EXTENSIONS)


def relay_url(target: str, relay_path: str) -> str:
    """Build the relay URL that fetches ``target``."""
    return f"{relay_path}?url={quote(target, safe='')}"


def find_self_reference(url: str, relay_path: str) -> Optional[str]:
    """Unwrap a URL that points back at the relay.

    Repeatedly takes the trailing ``url=`` parameter until the result no
    longer contains the relay path.

    Args:
        url: URL supplied to the relay
        relay_path: Path the relay is served under

    Returns:
        The innermost target URL, or None if ``url`` does not reference
        the relay or no target can be extracted from it.
    """
    if relay_path not in url:
        return None

    current = url
    for _ in range(MAX_UNWRAP_DEPTH):
        match = _URL_PARAM_RE.search(current)
        if match is None:
            break
        current = unquote(match.group(1))
        if relay_path not in current:
            return current
    return None


def resolve_uri(uri: str, upstream_url: str, relay_path: str) -> str:
    """Resolve a playlist reference against the upstream playlist URL.

    Args:
        uri: Reference as written in the playlist
        upstream_url: URL the playlist was fetched from
        relay_path: Path the relay is served under

    Returns:
        ``<relay_path>?url=<encoded>`` for nested playlists, the absolute
        URL for everything else.
    """
    absolute = urljoin(upstream_url, uri)
    if urlsplit(absolute).scheme not in ("http", "https"):
        return uri

    inner = find_self_reference(absolute, relay_path)
    if inner is not None:
        absolute = inner

    if is_playlist_url(absolute):
        return relay_url(absolute, relay_path)
    return absolute


def rewrite_line(line: PlaylistLine, upstream_url: str, relay_path: str) -> PlaylistLine:
    """Rewrite the reference carried by a single line, if any."""
    if isinstance(line, UriReference):
        resolved = resolve_uri(line.uri, upstream_url, relay_path)
        if resolved != line.uri:
            return line.with_uri(resolved)
    elif isinstance(line, Tag):
        uri = line.get("URI")
        if uri:
            resolved = resolve_uri(uri, upstream_url, relay_path)
            if resolved != uri:
                return line.with_attribute("URI", resolved)
    return line


def rewrite_playlist(text: str, upstream_url: str, relay_path: str) -> str:
    """Rewrite every reference in a playlist.

    URI lines and ``URI`` attributes (``EXT-X-MAP``, ``EXT-X-MEDIA``,
    ``EXT-X-I-FRAME-STREAM-INF``, keys) are rewritten; all other lines pass
    through unchanged and line order is preserved.
    """
    lines = parse_playlist(text)
    return serialize_playlist(
        [rewrite_line(line, upstream_url, relay_path) for line in lines]
    )

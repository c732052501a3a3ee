"""M3U8 playlist line model.

A playlist is parsed line by line into tagged variants. Every variant keeps
its raw text so lines that are not rewritten serialize back unchanged.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Optional, Union

PLAYLIST_HEADER = "#EXTM3U"

# Attribute values are either a quoted string (which may contain commas)
# or an unquoted token running up to the next comma.
_ATTRIBUTE_RE = re.compile(r'\s*([A-Za-z0-9-]+)=("[^"]*"|[^,]*)')


@dataclass(frozen=True)
class Attribute:
    """A single ``KEY=value`` pair from a tag's attribute list.

    ``span`` is the (start, end) offset of the value in the raw line,
    including quotes when ``quoted`` is set.
    """
    key: str
    value: str
    quoted: bool
    span: tuple[int, int]


@dataclass(frozen=True)
class Blank:
    raw: str = ""


@dataclass(frozen=True)
class Comment:
    raw: str


@dataclass(frozen=True)
class Tag:
    """An ``#EXT...`` line.

    ``value`` is everything after the first colon, or None for bare tags
    such as ``#EXTM3U``.
    """
    name: str
    value: Optional[str]
    raw: str
    attributes: tuple[Attribute, ...] = field(default=())

    def get(self, key: str) -> Optional[str]:
        """Get an attribute value with quotes removed."""
        for attribute in self.attributes:
            if attribute.key == key:
                return attribute.value
        return None

    def with_attribute(self, key: str, value: str) -> "Tag":
        """Return a copy with one attribute value replaced in place.

        The rest of the raw line, including the other attributes and their
        formatting, is left untouched.
        """
        for attribute in self.attributes:
            if attribute.key == key:
                start, end = attribute.span
                text = f'"{value}"' if attribute.quoted else value
                raw = self.raw[:start] + text + self.raw[end:]
                return parse_line(raw)
        raise KeyError(key)


@dataclass(frozen=True)
class UriReference:
    """A non-comment line naming a segment or nested playlist."""
    uri: str
    raw: str

    def with_uri(self, uri: str) -> "UriReference":
        start = self.raw.index(self.uri)
        end = start + len(self.uri)
        return replace(self, uri=uri, raw=self.raw[:start] + uri + self.raw[end:])


PlaylistLine = Union[Blank, Comment, Tag, UriReference]


def parse_attributes(text: str, offset: int = 0) -> tuple[Attribute, ...]:
    """Parse an attribute list, respecting quoted strings.

    Args:
        text: Attribute list, e.g. ``BANDWIDTH=800000,CODECS="avc1,mp4a"``
        offset: Position of ``text`` within the raw line, added to spans

    Returns:
        Parsed attributes in order. Parsing stops at the first malformed
        entry; the remainder is kept only in the raw line.
    """
    attributes = []
    pos = 0
    while pos < len(text):
        match = _ATTRIBUTE_RE.match(text, pos)
        if match is None:
            break
        raw_value = match.group(2)
        quoted = len(raw_value) >= 2 and raw_value.startswith('"') and raw_value.endswith('"')
        attributes.append(
            Attribute(
                key=match.group(1),
                value=raw_value[1:-1] if quoted else raw_value.strip(),
                quoted=quoted,
                span=(offset + match.start(2), offset + match.end(2)),
            )
        )
        pos = match.end()
        if pos < len(text):
            if text[pos] != ",":
                break
            pos += 1
    return tuple(attributes)


def parse_line(raw: str) -> PlaylistLine:
    """Classify a single playlist line."""
    stripped = raw.strip()
    if not stripped:
        return Blank(raw)
    if stripped.startswith("#EXT"):
        name, sep, value = stripped.partition(":")
        if not sep:
            return Tag(name=name, value=None, raw=raw)
        value_offset = raw.index(stripped) + len(name) + 1
        attributes = parse_attributes(value, value_offset) if "=" in value else ()
        return Tag(name=name, value=value, raw=raw, attributes=attributes)
    if stripped.startswith("#"):
        return Comment(raw)
    return UriReference(uri=stripped, raw=raw)


def parse_playlist(text: str) -> list[PlaylistLine]:
    """Parse playlist text into lines.

    Lines are split on ``\\n`` only, so a trailing ``\\r`` stays in the raw
    text and CRLF playlists serialize back byte-for-byte.
    """
    return [parse_line(raw) for raw in text.split("\n")]


def serialize_playlist(lines: list[PlaylistLine]) -> str:
    """Join parsed lines back into playlist text."""
    return "\n".join(line.raw for line in lines)


def is_playlist_text(text: str) -> bool:
    """Check whether text carries the M3U8 header."""
    return PLAYLIST_HEADER in text


def target_duration(lines: list[PlaylistLine]) -> Optional[int]:
    """Get the ``#EXT-X-TARGETDURATION`` value, if present."""
    for line in lines:
        if isinstance(line, Tag) and line.name == "#EXT-X-TARGETDURATION" and line.value:
            try:
                return int(float(line.value))
            except ValueError:
                return None
    return None


def segment_uris(lines: list[PlaylistLine]) -> list[str]:
    """Get the URI lines in playlist order."""
    return [line.uri for line in lines if isinstance(line, UriReference)]

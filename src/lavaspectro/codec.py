"""Track identifiers and the binary track message format.

A track identifier is the base64 text of one encoded track message::

    int32   header        flags << 30 | body size
    uint8   version       present only when ``flags & 1``
    utf     title
    utf     author
    int64   length_ms
    utf     identifier
    bool    is_stream
    utf?    uri           version >= 2
    utf?    artwork_url   version >= 3
    utf?    isrc          version >= 3
    utf     source_name
    bytes   source data   source specific
    int64   position_ms

``utf`` is an unsigned 16-bit length followed by modified UTF-8 bytes (NUL as
``C0 80``, characters above U+FFFF as two encoded surrogates) and ``utf?`` is a
presence flag followed by ``utf``. All integers are big-endian.
"""

from __future__ import annotations

import base64
import logging
import struct
from collections.abc import Iterable
from typing import Protocol

from lavaspectro.models import TrackDescriptor, TrackInfo

logger = logging.getLogger(__name__)

_FLAG_VERSIONED = 1
_SIZE_MASK = 0x3FFFFFFF
_LATEST_VERSION = 3
_DEFAULT_SOURCE_NAMES = ("local", "http")


class TrackDecodeError(ValueError):
    pass


class TrackCodec(Protocol):
    def decode(self, data: bytes) -> TrackDescriptor | None: ...


def resolve_track(track_id: str, codec: TrackCodec) -> TrackDescriptor | None:
    """Decode a base64 track identifier into a playable descriptor.

    Returns ``None`` when the codec understands the bytes but has no playable
    track for them. Raises ``TrackDecodeError`` for malformed identifiers.
    """
    try:
        data = base64.b64decode(track_id, validate=True)
    except ValueError as exc:
        raise TrackDecodeError(f"track identifier is not valid base64: {exc}") from exc
    if not data:
        raise TrackDecodeError("track identifier is empty")
    return codec.decode(data)


def encode_track_id(info: TrackInfo, source_data: bytes = b"") -> str:
    return base64.b64encode(MessageTrackCodec.encode(info, source_data)).decode("ascii")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def take(self, count: int) -> bytes:
        if count < 0 or count > self.remaining:
            raise TrackDecodeError(
                f"track message truncated: need {count} bytes at offset {self._offset}, have {self.remaining}"
            )
        chunk = self._data[self._offset : self._offset + count]
        self._offset += count
        return chunk

    def read_u8(self) -> int:
        return self.take(1)[0]

    def read_bool(self) -> bool:
        return self.read_u8() != 0

    def read_i64(self) -> int:
        return int(struct.unpack(">q", self.take(8))[0])

    def read_utf(self) -> str:
        (length,) = struct.unpack(">H", self.take(2))
        try:
            return decode_modified_utf8(self.take(length))
        except UnicodeError as exc:
            raise TrackDecodeError(f"invalid text field: {exc}") from exc

    def read_nullable_utf(self) -> str | None:
        return self.read_utf() if self.read_bool() else None


def decode_modified_utf8(raw: bytes) -> str:
    text = raw.replace(b"\xc0\x80", b"\x00").decode("utf-8", "surrogatepass")
    # Joins surrogate pairs; a lone surrogate is kept as is.
    return text.encode("utf-16-be", "surrogatepass").decode("utf-16-be", "surrogatepass")


def encode_modified_utf8(value: str) -> bytes:
    units = value.encode("utf-16-be", "surrogatepass")
    text = "".join(chr(int.from_bytes(units[i : i + 2], "big")) for i in range(0, len(units), 2))
    return text.encode("utf-8", "surrogatepass").replace(b"\x00", b"\xc0\x80")


def _utf(value: str) -> bytes:
    raw = encode_modified_utf8(value)
    if len(raw) > 0xFFFF:
        raise ValueError("text field too long")
    return struct.pack(">H", len(raw)) + raw


def _nullable_utf(value: str | None) -> bytes:
    if value is None:
        return b"\x00"
    return b"\x01" + _utf(value)


class MessageTrackCodec:
    """Codec for encoded track messages of the known sources."""

    def __init__(self, source_names: Iterable[str] = _DEFAULT_SOURCE_NAMES) -> None:
        self._source_names = frozenset(source_names)

    @property
    def source_names(self) -> frozenset[str]:
        return self._source_names

    def decode(self, data: bytes) -> TrackDescriptor | None:
        if len(data) < 4:
            raise TrackDecodeError("track message shorter than its header")
        (header,) = struct.unpack(">I", data[:4])
        if header == 0:
            return None
        flags = header >> 30
        size = header & _SIZE_MASK
        body = data[4:]
        if len(body) < size:
            raise TrackDecodeError(f"track message truncated: header size {size}, body {len(body)}")

        reader = _Reader(body[:size])
        version = reader.read_u8() if flags & _FLAG_VERSIONED else 1
        if version > _LATEST_VERSION:
            raise TrackDecodeError(f"unsupported track message version {version}")

        title = reader.read_utf()
        author = reader.read_utf()
        length_ms = reader.read_i64()
        identifier = reader.read_utf()
        is_stream = reader.read_bool()
        uri = reader.read_nullable_utf() if version >= 2 else None
        artwork_url = reader.read_nullable_utf() if version >= 3 else None
        isrc = reader.read_nullable_utf() if version >= 3 else None
        source_name = reader.read_utf()
        if reader.remaining < 8:
            raise TrackDecodeError("track message missing position")
        source_data = reader.take(reader.remaining - 8)
        position_ms = reader.read_i64()

        if source_name not in self._source_names:
            logger.debug("no source for track %r (source=%s)", title, source_name)
            return None

        info = TrackInfo(
            title=title,
            author=author,
            length_ms=length_ms,
            identifier=identifier,
            is_stream=is_stream,
            uri=uri,
            artwork_url=artwork_url,
            isrc=isrc,
            source_name=source_name,
            position_ms=position_ms,
        )
        return TrackDescriptor(info=info, source_data=source_data)

    @staticmethod
    def encode(info: TrackInfo, source_data: bytes = b"") -> bytes:
        body = b"".join(
            [
                bytes([_LATEST_VERSION]),
                _utf(info.title),
                _utf(info.author),
                struct.pack(">q", info.length_ms),
                _utf(info.identifier),
                b"\x01" if info.is_stream else b"\x00",
                _nullable_utf(info.uri),
                _nullable_utf(info.artwork_url),
                _nullable_utf(info.isrc),
                _utf(info.source_name),
                source_data,
                struct.pack(">q", info.position_ms),
            ]
        )
        if len(body) > _SIZE_MASK:
            raise ValueError("track message too large")
        header = (_FLAG_VERSIONED << 30) | len(body)
        return struct.pack(">I", header) + body

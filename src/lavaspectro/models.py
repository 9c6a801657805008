from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from lavaspectro.constants import (
    BAND_COUNT,
    OUTPUT_CHANNELS,
    OUTPUT_SAMPLE_RATE,
    RENDER_POLL_INTERVAL_SEC,
    RENDER_TIMEOUT_SEC,
    WINDOW_SIZE,
)

Spectrogram = tuple[bytes, ...]


@dataclass(frozen=True)
class TrackInfo:
    title: str
    author: str
    length_ms: int
    identifier: str
    is_stream: bool
    uri: str | None = None
    artwork_url: str | None = None
    isrc: str | None = None
    source_name: str = "local"
    position_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TrackDescriptor:
    info: TrackInfo
    source_data: bytes = b""

    @property
    def title(self) -> str:
        return self.info.title

    @property
    def is_stream(self) -> bool:
        return self.info.is_stream


@dataclass(frozen=True)
class PcmFormat:
    """Signed 16-bit big-endian interleaved PCM."""

    sample_rate: int = OUTPUT_SAMPLE_RATE
    channels: int = OUTPUT_CHANNELS
    sample_width: int = 2

    @property
    def frame_width(self) -> int:
        return self.channels * self.sample_width

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SpectrogramSettings:
    window_size: int = WINDOW_SIZE
    band_count: int = BAND_COUNT
    deinterleave: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RenderSettings:
    timeout_sec: float = RENDER_TIMEOUT_SEC
    poll_interval_sec: float = RENDER_POLL_INTERVAL_SEC

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SpectrogramStatus(str, Enum):
    CACHED = "cached"
    COMPUTED = "computed"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SpectrogramResult:
    status: SpectrogramStatus
    frames: Spectrogram | None = None
    reason: str | None = None  # decode_error | not_found | stream | failed
    timed_out: bool = False

    @property
    def available(self) -> bool:
        return self.frames is not None

    @classmethod
    def unavailable(cls, reason: str) -> SpectrogramResult:
        return cls(status=SpectrogramStatus.UNAVAILABLE, reason=reason)

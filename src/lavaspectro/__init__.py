from lavaspectro.cache import SpectrogramCache
from lavaspectro.codec import MessageTrackCodec, TrackDecodeError, encode_track_id, resolve_track
from lavaspectro.manager import SpectrogramManager
from lavaspectro.models import (
    PcmFormat,
    RenderSettings,
    Spectrogram,
    SpectrogramResult,
    SpectrogramSettings,
    SpectrogramStatus,
    TrackDescriptor,
    TrackInfo,
)
from lavaspectro.renderer import PcmFrameSource, SoundFileEngine
from lavaspectro.spectral import SpectralAccumulator, compute_spectrogram

__all__ = [
    "MessageTrackCodec",
    "PcmFormat",
    "PcmFrameSource",
    "RenderSettings",
    "SoundFileEngine",
    "SpectralAccumulator",
    "Spectrogram",
    "SpectrogramCache",
    "SpectrogramManager",
    "SpectrogramResult",
    "SpectrogramSettings",
    "SpectrogramStatus",
    "TrackDecodeError",
    "TrackDescriptor",
    "TrackInfo",
    "compute_spectrogram",
    "encode_track_id",
    "resolve_track",
]

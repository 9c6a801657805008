from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from types import TracebackType

from lavaspectro.cache import SpectrogramCache
from lavaspectro.codec import TrackCodec, TrackDecodeError, resolve_track
from lavaspectro.models import (
    RenderSettings,
    Spectrogram,
    SpectrogramResult,
    SpectrogramSettings,
    SpectrogramStatus,
    TrackDescriptor,
)
from lavaspectro.renderer import PcmFrameSource, RenderEngine
from lavaspectro.spectral import SpectralAccumulator

logger = logging.getLogger(__name__)


class SpectrogramManager:
    """Entry point for spectrogram requests.

    Results are cached per track identifier. Every failure is reported as an
    unavailable result; nothing raises past ``request``.
    """

    def __init__(
        self,
        codec: TrackCodec,
        engine: RenderEngine,
        cache: SpectrogramCache | None = None,
        spectrogram_settings: SpectrogramSettings | None = None,
        render_settings: RenderSettings | None = None,
        max_workers: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._codec = codec
        self._cache = cache if cache is not None else SpectrogramCache()
        self._settings = spectrogram_settings or SpectrogramSettings()
        self._frame_source = PcmFrameSource(engine, render_settings, clock)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lavaspectro")

    @property
    def cache(self) -> SpectrogramCache:
        return self._cache

    def __enter__(self) -> SpectrogramManager:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def get_spectrogram(self, track_id: str) -> Spectrogram | None:
        return self.request(track_id).frames

    def submit(self, track_id: str) -> Future[SpectrogramResult]:
        """Run ``request`` on the worker pool."""
        return self._executor.submit(self.request, track_id)

    def request(self, track_id: str) -> SpectrogramResult:
        cached = self._cache.get(track_id)
        if cached is not None:
            return SpectrogramResult(status=SpectrogramStatus.CACHED, frames=cached)

        try:
            descriptor = resolve_track(track_id, self._codec)
        except TrackDecodeError as exc:
            logger.info("could not decode track %s: %s", track_id[:16], exc)
            return SpectrogramResult.unavailable("decode_error")
        except Exception:
            logger.exception("failed to resolve track %s", track_id[:16])
            return SpectrogramResult.unavailable("failed")
        if descriptor is None:
            return SpectrogramResult.unavailable("not_found")
        if descriptor.is_stream:
            logger.debug("skipping live stream %s", descriptor.title)
            return SpectrogramResult.unavailable("stream")

        timed_out = threading.Event()
        try:
            frames, computed = self._cache.get_or_compute(
                track_id,
                lambda: self._calculate(descriptor, timed_out),
            )
        except Exception:
            logger.exception("failed to calculate spectrogram for %s (%s)", track_id[:16], descriptor.title)
            return SpectrogramResult.unavailable("failed")
        if frames is None:
            return SpectrogramResult.unavailable("failed")
        status = SpectrogramStatus.COMPUTED if computed else SpectrogramStatus.CACHED
        return SpectrogramResult(status=status, frames=frames, timed_out=timed_out.is_set())

    def _calculate(self, descriptor: TrackDescriptor, timed_out: threading.Event) -> list[bytes]:
        accumulator = SpectralAccumulator(self._settings, self._frame_source.output_format)
        stream = self._frame_source.open(descriptor)
        frames: list[bytes] = []
        for chunk in stream:
            frames.extend(accumulator.feed(chunk))
        if stream.timed_out:
            timed_out.set()
        logger.info(
            "calculated spectrogram: %d frames for track %s in %.2fs",
            len(frames),
            descriptor.title,
            stream.elapsed_sec,
        )
        return frames

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Protocol
from urllib.parse import unquote, urlparse

import librosa
import numpy as np
import soundfile as sf

from lavaspectro.constants import RENDER_FRAME_DURATION_MS, RENDER_QUEUE_MAX_FRAMES
from lavaspectro.models import PcmFormat, RenderSettings, TrackDescriptor

logger = logging.getLogger(__name__)

_QUEUE_PUT_TIMEOUT_SEC = 0.1
_DECODER_JOIN_TIMEOUT_SEC = 2.0


class RenderSession(Protocol):
    @property
    def is_playing(self) -> bool: ...

    def play(self, descriptor: TrackDescriptor) -> None: ...

    def provide(self) -> bytes | None: ...

    def destroy(self) -> None: ...


class RenderEngine(Protocol):
    @property
    def output_format(self) -> PcmFormat: ...

    def create_session(self) -> RenderSession: ...


class RenderStream:
    """Frames of one track rendered on a private session.

    Iterating starts playback. The loop ends at end of stream, when the time
    budget is used up (``timed_out``) or when ``stop_event`` is set
    (``cancelled``). The session is destroyed on every exit path.
    """

    def __init__(
        self,
        engine: RenderEngine,
        descriptor: TrackDescriptor,
        settings: RenderSettings,
        clock: Callable[[], float],
        stop_event: threading.Event | None = None,
    ) -> None:
        self._engine = engine
        self._descriptor = descriptor
        self._settings = settings
        self._clock = clock
        self._stop_event = stop_event or threading.Event()
        self._started = False
        self.timed_out = False
        self.cancelled = False
        self.frames_read = 0
        self.elapsed_sec = 0.0

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise RuntimeError("render stream can only be iterated once")
        self._started = True
        return self._run()

    def _run(self) -> Iterator[bytes]:
        session = self._engine.create_session()
        start = self._clock()
        try:
            session.play(self._descriptor)
            while True:
                self.elapsed_sec = self._clock() - start
                if self.elapsed_sec > self._settings.timeout_sec:
                    self.timed_out = True
                    logger.warning(
                        "spectrogram render timed out after %.1fs for %s (%d frames read)",
                        self.elapsed_sec,
                        self._descriptor.title,
                        self.frames_read,
                    )
                    return
                if self._stop_event.is_set():
                    self._cancel()
                    return

                frame = session.provide()
                if frame is None:
                    if not session.is_playing:
                        return
                    if self._stop_event.wait(self._settings.poll_interval_sec):
                        self._cancel()
                        return
                    continue
                if not frame:
                    continue
                self.frames_read += 1
                yield frame
        finally:
            try:
                session.destroy()
            except Exception:
                logger.exception("failed to destroy render session for %s", self._descriptor.title)

    def _cancel(self) -> None:
        self.cancelled = True
        logger.info("spectrogram render cancelled for %s", self._descriptor.title)


class PcmFrameSource:
    def __init__(
        self,
        engine: RenderEngine,
        settings: RenderSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._settings = settings or RenderSettings()
        self._clock = clock

    @property
    def output_format(self) -> PcmFormat:
        return self._engine.output_format

    def open(self, descriptor: TrackDescriptor, stop_event: threading.Event | None = None) -> RenderStream:
        return RenderStream(self._engine, descriptor, self._settings, self._clock, stop_event)


class SoundFileEngine:
    """Renders local audio files to interleaved S16 BE frames."""

    def __init__(
        self,
        output_format: PcmFormat | None = None,
        frame_duration_ms: int = RENDER_FRAME_DURATION_MS,
        queue_max_frames: int = RENDER_QUEUE_MAX_FRAMES,
    ) -> None:
        self._format = output_format or PcmFormat()
        self._frame_samples = max(1, self._format.sample_rate * frame_duration_ms // 1000)
        self._queue_max_frames = queue_max_frames

    @property
    def output_format(self) -> PcmFormat:
        return self._format

    def create_session(self) -> SoundFileSession:
        return SoundFileSession(self._format, self._frame_samples, self._queue_max_frames)


class SoundFileSession:
    def __init__(self, output_format: PcmFormat, frame_samples: int, queue_max_frames: int) -> None:
        self._format = output_format
        self._frame_bytes = frame_samples * output_format.frame_width
        self._queue: Queue[bytes] = Queue(maxsize=queue_max_frames)
        self._stop = threading.Event()
        self._finished = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None
        self._playing = False
        self._destroyed = False

    @property
    def is_playing(self) -> bool:
        return self._playing

    def play(self, descriptor: TrackDescriptor) -> None:
        if self._destroyed:
            raise RuntimeError("render session already destroyed")
        if self._thread is not None:
            raise RuntimeError("render session is already playing")
        if descriptor.is_stream:
            raise ValueError(f"cannot render live stream: {descriptor.title}")
        path = track_path(descriptor)
        self._playing = True
        self._thread = threading.Thread(
            target=self._decode,
            args=(path,),
            name="lavaspectro-decoder",
            daemon=True,
        )
        self._thread.start()

    def provide(self) -> bytes | None:
        if self._thread is None:
            return None
        try:
            return self._queue.get_nowait()
        except Empty:
            pass
        if not self._finished.is_set():
            return None
        # All frames are queued before the finished flag is set.
        try:
            return self._queue.get_nowait()
        except Empty:
            pass
        self._playing = False
        if self._error is not None:
            error, self._error = self._error, None
            raise RuntimeError("audio decoding failed") from error
        return None

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._playing = False
        self._stop.set()
        while True:
            try:
                self._queue.get_nowait()
            except Empty:
                break
        if self._thread is not None:
            self._thread.join(timeout=_DECODER_JOIN_TIMEOUT_SEC)
            if self._thread.is_alive():
                logger.warning("decoder thread did not stop within %.1fs", _DECODER_JOIN_TIMEOUT_SEC)

    def _decode(self, path: Path) -> None:
        try:
            pcm = self._load_pcm(path)
            for offset in range(0, len(pcm), self._frame_bytes):
                if not self._enqueue(pcm[offset : offset + self._frame_bytes]):
                    return
        except Exception as exc:
            logger.debug("decoder failed for %s", path, exc_info=True)
            self._error = exc
        finally:
            self._finished.set()

    def _enqueue(self, frame: bytes) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(frame, timeout=_QUEUE_PUT_TIMEOUT_SEC)
                return True
            except Full:
                continue
        return False

    def _load_pcm(self, path: Path) -> bytes:
        audio, sample_rate = sf.read(path, dtype="float32", always_2d=True)
        if audio.shape[0] == 0:
            return b""
        if int(sample_rate) != self._format.sample_rate:
            audio = librosa.resample(audio.T, orig_sr=int(sample_rate), target_sr=self._format.sample_rate).T
        audio = _match_channels(np.asarray(audio, dtype=np.float32), self._format.channels)
        scaled = np.rint(np.clip(audio, -1.0, 1.0) * 32767.0)
        return scaled.astype(">i2").tobytes()


def track_path(descriptor: TrackDescriptor) -> Path:
    uri = descriptor.info.uri or descriptor.info.identifier
    if not uri:
        raise ValueError(f"track has no location: {descriptor.title}")
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ValueError(f"unsupported track location: {uri}")
    return Path(uri)


def _match_channels(audio: np.ndarray, channels: int) -> np.ndarray:
    source_channels = audio.shape[1]
    if source_channels == channels:
        return audio
    if channels == 1:
        return audio.mean(axis=1, keepdims=True)
    if source_channels == 1:
        return np.repeat(audio, channels, axis=1)
    if source_channels > channels:
        return audio[:, :channels]
    pad = np.repeat(audio[:, -1:], channels - source_channels, axis=1)
    return np.concatenate([audio, pad], axis=1)

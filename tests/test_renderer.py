import itertools
import threading
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from lavaspectro.models import PcmFormat, RenderSettings, TrackDescriptor, TrackInfo
from lavaspectro.renderer import PcmFrameSource, SoundFileEngine, track_path
from lavaspectro.spectral import decode_pcm_s16be


def _descriptor(uri: str = "/tmp/track.wav", is_stream: bool = False) -> TrackDescriptor:
    return TrackDescriptor(
        info=TrackInfo(
            title="test track",
            author="tester",
            length_ms=1000,
            identifier=uri,
            is_stream=is_stream,
            uri=uri,
        )
    )


class _ScriptedSession:
    """Plays a fixed script; ``None`` entries mean the renderer is still buffering."""

    def __init__(self, script: list[bytes | None], endless: bool = False) -> None:
        self._script = list(script)
        self._endless = endless
        self.played: TrackDescriptor | None = None
        self.destroy_calls = 0

    @property
    def is_playing(self) -> bool:
        return self._endless or bool(self._script)

    def play(self, descriptor: TrackDescriptor) -> None:
        self.played = descriptor

    def provide(self) -> bytes | None:
        if self._endless:
            return b"\x00\x01" * 8
        if not self._script:
            return None
        return self._script.pop(0)

    def destroy(self) -> None:
        self.destroy_calls += 1


class _ScriptedEngine:
    def __init__(self, factory: Callable[[], _ScriptedSession]) -> None:
        self._factory = factory
        self.sessions: list[_ScriptedSession] = []

    @property
    def output_format(self) -> PcmFormat:
        return PcmFormat()

    def create_session(self) -> _ScriptedSession:
        session = self._factory()
        self.sessions.append(session)
        return session


def _fast_settings(timeout_sec: float = 10.0) -> RenderSettings:
    return RenderSettings(timeout_sec=timeout_sec, poll_interval_sec=0.0)


def test_stream_yields_frames_in_order_and_destroys_session() -> None:
    engine = _ScriptedEngine(lambda: _ScriptedSession([b"\x00\x01", None, b"", b"\x00\x02"]))
    descriptor = _descriptor()

    stream = PcmFrameSource(engine, _fast_settings()).open(descriptor)
    frames = list(stream)

    assert frames == [b"\x00\x01", b"\x00\x02"]
    assert stream.frames_read == 2
    assert stream.timed_out is False
    assert stream.cancelled is False
    session = engine.sessions[0]
    assert session.played == descriptor
    assert session.destroy_calls == 1


def test_stream_does_not_start_until_iterated() -> None:
    engine = _ScriptedEngine(lambda: _ScriptedSession([b"\x00\x01"]))

    PcmFrameSource(engine, _fast_settings()).open(_descriptor())

    assert engine.sessions == []


def test_stream_stops_at_time_budget() -> None:
    ticks = itertools.count()
    engine = _ScriptedEngine(lambda: _ScriptedSession([], endless=True))

    stream = PcmFrameSource(engine, _fast_settings(timeout_sec=5.0), clock=lambda: float(next(ticks))).open(
        _descriptor()
    )
    frames = list(stream)

    assert stream.timed_out is True
    assert 0 < len(frames) <= 5
    assert engine.sessions[0].destroy_calls == 1


def test_stream_timeout_is_logged_as_warning(caplog: pytest.LogCaptureFixture) -> None:
    ticks = itertools.count()
    engine = _ScriptedEngine(lambda: _ScriptedSession([], endless=True))

    with caplog.at_level("WARNING", logger="lavaspectro.renderer"):
        list(PcmFrameSource(engine, _fast_settings(timeout_sec=2.0), clock=lambda: float(next(ticks))).open(_descriptor()))

    assert any("timed out" in record.message and "test track" in record.message for record in caplog.records)


def test_stream_stops_when_stop_event_is_set() -> None:
    engine = _ScriptedEngine(lambda: _ScriptedSession([], endless=True))
    stop = threading.Event()
    stop.set()

    stream = PcmFrameSource(engine, _fast_settings()).open(_descriptor(), stop_event=stop)

    assert list(stream) == []
    assert stream.cancelled is True
    assert engine.sessions[0].destroy_calls == 1


def test_stream_destroys_session_when_provide_fails() -> None:
    class _FailingSession(_ScriptedSession):
        def provide(self) -> bytes | None:
            raise RuntimeError("decoder exploded")

    engine = _ScriptedEngine(lambda: _FailingSession([b"\x00"]))

    with pytest.raises(RuntimeError, match="decoder exploded"):
        list(PcmFrameSource(engine, _fast_settings()).open(_descriptor()))
    assert engine.sessions[0].destroy_calls == 1


def test_stream_destroys_session_when_closed_early() -> None:
    engine = _ScriptedEngine(lambda: _ScriptedSession([], endless=True))
    stream = PcmFrameSource(engine, _fast_settings()).open(_descriptor())

    iterator = iter(stream)
    next(iterator)
    iterator.close()  # type: ignore[attr-defined]

    assert engine.sessions[0].destroy_calls == 1
    with pytest.raises(RuntimeError):
        iter(stream)


def _collect_pcm(engine: SoundFileEngine, descriptor: TrackDescriptor) -> bytes:
    source = PcmFrameSource(engine, RenderSettings(timeout_sec=30.0, poll_interval_sec=0.001))
    return b"".join(source.open(descriptor))


def test_soundfile_engine_renders_mono_file_as_stereo(tmp_path: Path) -> None:
    path = tmp_path / "tone.wav"
    sample_rate = 48000
    t = np.arange(sample_rate // 2, dtype=np.float64) / float(sample_rate)
    sf.write(path, (0.5 * np.sin(2.0 * np.pi * 440.0 * t)).astype(np.float32), sample_rate)
    engine = SoundFileEngine(queue_max_frames=4)

    pcm = _collect_pcm(engine, _descriptor(str(path)))

    samples = decode_pcm_s16be(pcm)
    assert samples.size == 2 * (sample_rate // 2)
    left, right = samples[0::2], samples[1::2]
    assert np.array_equal(left, right)
    assert 15000 < int(np.abs(left).max()) <= 16384


def test_soundfile_engine_resamples_to_output_rate(tmp_path: Path) -> None:
    path = tmp_path / "tone.flac"
    sample_rate = 44100
    data = np.zeros((sample_rate // 2, 2), dtype=np.float32)
    sf.write(path, data, sample_rate, format="FLAC")
    engine = SoundFileEngine(output_format=PcmFormat(sample_rate=48000, channels=2))

    pcm = _collect_pcm(engine, _descriptor(path.as_uri()))

    frames = len(pcm) // 4
    assert abs(frames - 24000) <= 1


def test_soundfile_engine_reports_missing_file(tmp_path: Path) -> None:
    engine = SoundFileEngine()

    with pytest.raises(RuntimeError, match="decoding failed"):
        _collect_pcm(engine, _descriptor(str(tmp_path / "missing.wav")))


def test_soundfile_session_refuses_live_streams() -> None:
    session = SoundFileEngine().create_session()
    try:
        with pytest.raises(ValueError, match="live stream"):
            session.play(_descriptor(is_stream=True))
    finally:
        session.destroy()


def test_track_path_accepts_file_uri_and_plain_path(tmp_path: Path) -> None:
    target = tmp_path / "a b.wav"

    assert track_path(_descriptor(target.as_uri())) == target
    assert track_path(_descriptor(str(target))) == target
    with pytest.raises(ValueError):
        track_path(_descriptor("https://example.com/stream.mp3"))

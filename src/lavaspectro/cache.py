from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from lavaspectro.models import Spectrogram

logger = logging.getLogger(__name__)


class _Flight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Spectrogram | None = None
        self.error: BaseException | None = None


class SpectrogramCache:
    """In-memory spectrograms keyed by track identifier.

    ``get_or_compute`` runs at most one computation per key at a time. Callers
    arriving while a computation for their key is in flight wait for it and
    share its outcome. Entries are never evicted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, Spectrogram] = {}
        self._in_flight: dict[str, _Flight] = {}

    def __contains__(self, track_id: object) -> bool:
        with self._lock:
            return track_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, track_id: str) -> Spectrogram | None:
        with self._lock:
            return self._entries.get(track_id)

    def store(self, track_id: str, frames: Iterable[bytes]) -> Spectrogram:
        spectrogram = tuple(bytes(frame) for frame in frames)
        with self._lock:
            self._entries[track_id] = spectrogram
        return spectrogram

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_compute(
        self,
        track_id: str,
        compute: Callable[[], Iterable[bytes] | None],
    ) -> tuple[Spectrogram | None, bool]:
        """Return ``(spectrogram, computed)``.

        ``computed`` is true only for the caller that ran ``compute``. A
        ``None`` outcome is shared with waiting callers but not stored.
        """
        with self._lock:
            cached = self._entries.get(track_id)
            if cached is not None:
                return cached, False
            flight = self._in_flight.get(track_id)
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._in_flight[track_id] = flight

        if not leader:
            logger.debug("waiting for in-flight spectrogram: %s", track_id[:16])
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result, False

        try:
            frames = compute()
            result = None if frames is None else tuple(bytes(frame) for frame in frames)
            flight.result = result
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._lock:
                if flight.result is not None:
                    self._entries[track_id] = flight.result
                del self._in_flight[track_id]
            flight.done.set()
        return result, True

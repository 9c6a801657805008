from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from pathlib import Path

import numpy as np

from lavaspectro.models import PcmFormat
from lavaspectro.spectral import SpectralAccumulator


def main() -> None:
    pcm_format = PcmFormat()
    duration_sec = 600.0
    frames = int(pcm_format.sample_rate * duration_sec)
    t = np.arange(frames, dtype=np.float64) / float(pcm_format.sample_rate)
    mono = 6000.0 * np.sin(2.0 * np.pi * 220.0 * t) + 3000.0 * np.sin(2.0 * np.pi * 880.0 * t)
    pcm = np.repeat(np.rint(mono), pcm_format.channels).astype(">i2").tobytes()
    chunk_bytes = pcm_format.sample_rate * pcm_format.frame_width // 50

    iterations = 5
    warmup = 1
    times_ms: list[float] = []
    frame_count = 0
    for index in range(warmup + iterations):
        accumulator = SpectralAccumulator(pcm_format=pcm_format)
        t0 = time.perf_counter()
        for offset in range(0, len(pcm), chunk_bytes):
            accumulator.feed(pcm[offset : offset + chunk_bytes])
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        frame_count = accumulator.frame_count
        if index >= warmup:
            times_ms.append(elapsed_ms)

    arr = np.asarray(times_ms, dtype=np.float64)
    payload = {
        "captured_at": datetime.now(UTC).isoformat(),
        "sample_rate": pcm_format.sample_rate,
        "channels": pcm_format.channels,
        "duration_sec": duration_sec,
        "frame_count": frame_count,
        "iterations": iterations,
        "timings_ms": [round(float(v), 4) for v in times_ms],
        "stats_ms": {
            "min": float(np.min(arr)),
            "max": float(np.max(arr)),
            "mean": float(np.mean(arr)),
            "p95": float(np.percentile(arr, 95.0)),
        },
    }
    out_dir = Path("logs/benchmarks")
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    out_file = out_dir / f"spectral-engine-{stamp}.json"
    latest_file = out_dir / "spectral-engine-latest.json"
    out_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    latest_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    print(out_file)


if __name__ == "__main__":
    main()

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path

import soundfile as sf

from lavaspectro.api_schema import SpectrogramRequestPayload, build_spectrogram_payload, parse_payload
from lavaspectro.codec import MessageTrackCodec, encode_track_id
from lavaspectro.logging_utils import configure_logging
from lavaspectro.manager import SpectrogramManager
from lavaspectro.models import RenderSettings, TrackInfo
from lavaspectro.renderer import SoundFileEngine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lavaspectro", description="Band-energy spectrograms for encoded tracks.")
    commands = parser.add_subparsers(dest="command", required=True)

    encode = commands.add_parser("encode", help="print the track identifier of a local audio file")
    encode.add_argument("path", type=Path)
    encode.add_argument("--title", default=None)
    encode.add_argument("--author", default="unknown")

    compute = commands.add_parser("compute", help="compute the spectrogram of a track identifier")
    compute.add_argument("track")
    compute.add_argument("--timeout", type=float, default=RenderSettings().timeout_sec)
    compute.add_argument("--json", action="store_true", help="print the full response payload")
    return parser


def encode_local_file(path: Path, title: str | None = None, author: str = "unknown") -> str:
    resolved = path.expanduser().resolve()
    info = sf.info(str(resolved))
    track = TrackInfo(
        title=title or resolved.stem,
        author=author,
        length_ms=int(round(info.duration * 1000.0)),
        identifier=str(resolved),
        is_stream=False,
        uri=str(resolved),
        source_name="local",
    )
    return encode_track_id(track)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "encode":
        print(encode_local_file(args.path, args.title, args.author))
        return 0

    parsed, error = parse_payload(SpectrogramRequestPayload, {"track": args.track})
    if error or not isinstance(parsed, SpectrogramRequestPayload):
        print(error or "Invalid payload.", file=sys.stderr)
        return 2

    configure_logging()
    with SpectrogramManager(
        codec=MessageTrackCodec(),
        engine=SoundFileEngine(),
        render_settings=RenderSettings(timeout_sec=args.timeout),
    ) as manager:
        result = manager.request(parsed.track)

    payload = build_spectrogram_payload(result)
    if args.json:
        print(json.dumps(payload))
    else:
        print(
            f"status={payload['status']} reason={payload['reason']} "
            f"frames={payload['frame_count']} bands={payload['band_count']} timed_out={payload['timed_out']}"
        )
    return 0 if result.available else 1


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import base64
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from lavaspectro.constants import BAND_COUNT
from lavaspectro.models import SpectrogramResult


class PayloadBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SpectrogramRequestPayload(PayloadBase):
    track: str

    @field_validator("track")
    @classmethod
    def validate_track(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Track identifier is empty.")
        try:
            base64.b64decode(value, validate=True)
        except ValueError as exc:
            raise ValueError("Track identifier must be base64.") from exc
        return value


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for item in exc.errors():
        loc = ".".join(str(piece) for piece in item.get("loc", [])) or "payload"
        msg = item.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}")
    details = "; ".join(parts) if parts else "invalid payload"
    return f"Invalid payload: {details}"


def parse_payload(model: type[PayloadBase], payload: Any) -> tuple[PayloadBase | None, str | None]:
    if not isinstance(payload, dict):
        return None, "Invalid payload: expected object."
    try:
        return model.model_validate(payload), None
    except ValidationError as exc:
        return None, _format_validation_error(exc)


def build_spectrogram_payload(result: SpectrogramResult) -> dict[str, Any]:
    frames = result.frames or ()
    return {
        "status": result.status.value,
        "reason": result.reason,
        "timed_out": result.timed_out,
        "band_count": len(frames[0]) if frames else BAND_COUNT,
        "frame_count": len(frames),
        "frames": [base64.b64encode(frame).decode("ascii") for frame in frames],
    }

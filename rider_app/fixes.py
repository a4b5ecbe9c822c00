"""Fix normalization: turn a raw platform location sample into a validated Fix.

Raw samples follow the shape mobile location APIs hand back::

    {"timestamp": 1700000000000,
     "coords": {"latitude": .., "longitude": .., "accuracy": .., "altitude": ..,
                "speed": .., "heading": ..},
     "mocked": False, "provider": "gps"}

Platforms report "unknown" speed, heading and accuracy as negative numbers;
those become None.
"""

import math
from dataclasses import asdict, dataclass
from typing import Optional

from rider_app.errors import InvalidFixError

PROVIDERS = ("gps", "network", "fused", "unknown")


@dataclass(frozen=True)
class Fix:
    ts_ms: int
    lat: float
    lng: float
    accuracy_m: Optional[float] = None
    altitude_m: Optional[float] = None
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = None
    mocked: Optional[bool] = None
    provider: str = "unknown"

    def __post_init__(self):
        for name in ("lat", "lng"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value):
                raise InvalidFixError(f"{name} must be a finite number, got {value!r}")
        if not -90 <= self.lat <= 90:
            raise InvalidFixError(f"lat out of range: {self.lat}")
        if not -180 <= self.lng <= 180:
            raise InvalidFixError(f"lng out of range: {self.lng}")
        if self.provider not in PROVIDERS:
            raise InvalidFixError(f"unknown provider: {self.provider!r}")

    def within_accuracy(self, ceiling_m: float) -> bool:
        """True when accuracy is unknown or no worse than ``ceiling_m``."""
        return self.accuracy_m is None or self.accuracy_m <= ceiling_m

    def to_wire(self) -> dict:
        """camelCase ping body, omitting unknown fields."""
        names = {
            "ts_ms": "tsMs", "lat": "lat", "lng": "lng", "accuracy_m": "accuracyM",
            "altitude_m": "altitudeM", "speed_mps": "speedMps", "heading_deg": "headingDeg",
            "mocked": "mocked", "provider": "provider",
        }
        return {names[k]: v for k, v in asdict(self).items() if v is not None}


def _non_negative(value) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return None
    return value


def normalize_fix(raw: dict) -> Fix:
    """Build a Fix from a raw platform sample, raising InvalidFixError if unusable."""
    coords = raw.get("coords") or {}
    try:
        ts_ms = int(raw["timestamp"])
        lat = float(coords["latitude"])
        lng = float(coords["longitude"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidFixError(f"malformed location sample: {e}") from e

    altitude = coords.get("altitude")
    heading = _non_negative(coords.get("heading"))
    if heading is not None and heading > 360:
        heading = None

    provider = raw.get("provider") or "unknown"
    if provider not in PROVIDERS:
        provider = "unknown"

    mocked = raw.get("mocked")
    return Fix(
        ts_ms=ts_ms,
        lat=lat,
        lng=lng,
        accuracy_m=_non_negative(coords.get("accuracy")),
        altitude_m=float(altitude) if altitude is not None else None,
        speed_mps=_non_negative(coords.get("speed")),
        heading_deg=heading,
        mocked=bool(mocked) if mocked is not None else None,
        provider=provider,
    )

"""Client configuration: tracker and pinger knobs, API base URL from the environment."""

import os
from dataclasses import dataclass, field

API_BASE_URL = os.environ.get("RIDER_API_BASE_URL", "http://localhost:8080")
PING_PATH = "/api/v1/rider/location/ping"


@dataclass(frozen=True)
class TrackerConfig:
    accuracy_ceiling_m: float = 80.0   # samples reporting worse accuracy are dropped
    initial_fix_factor: float = 2.0    # the one-shot initial fix may be this much looser
    time_interval_ms: int = 2000
    distance_interval_m: float = 5.0


@dataclass(frozen=True)
class PingerConfig:
    min_interval_ms: int = 3000
    timeout_s: float = 10.0
    api_base_url: str = field(default_factory=lambda: API_BASE_URL)

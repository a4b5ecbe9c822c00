"""Fraud scoring for rider location pings.

Compares the current fix against the previous stored fix for the same
(rider, device) binding and returns the set of fired signals, a bounded score,
and the intermediate measurements. The scorer is a pure function: the server
clock is passed in, never read, so replaying stored inputs reproduces the score.

Points are plain dicts with the keys ``ts_ms``, ``lat``, ``lng`` and optionally
``accuracy_m``, ``speed_mps``, ``heading_deg``, ``mocked``.
"""

import logging
import math
from typing import Optional

from sqlalchemy.orm import Session

from models import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

ACCURACY_CEILING_M = 80.0          # fixes reporting worse 1-sigma accuracy are low quality
STALE_BUDGET_S = 120               # max age of a fix when it reaches the server
MAX_PLAUSIBLE_SPEED_MPS = 55.0     # ~200 km/h
SPEED_MISMATCH_TOLERANCE = 0.40    # relative divergence of reported vs implied speed
MIN_SPEED_FOR_MISMATCH_MPS = 0.0   # opt-in floor; below it speed_mismatch is not evaluated
HEADING_MISMATCH_DEG = 75.0
HEADING_MIN_SPEED_MPS = 2.0        # below this the bearing between fixes is GPS jitter

# Ordered: signals are reported in this order.
SIGNAL_WEIGHTS = {
    "teleport": 40,
    "mocked": 35,
    "device_mismatch": 25,
    "out_of_order": 15,
    "speed_mismatch": 15,
    "stale": 10,
    "low_accuracy": 10,
    "heading_mismatch": 10,
}

MAX_SCORE = 100


def default_thresholds() -> dict:
    return {
        "accuracy_ceiling_m": ACCURACY_CEILING_M,
        "stale_budget_s": STALE_BUDGET_S,
        "max_plausible_speed_mps": MAX_PLAUSIBLE_SPEED_MPS,
        "speed_mismatch_tolerance": SPEED_MISMATCH_TOLERANCE,
        "min_speed_for_mismatch_mps": MIN_SPEED_FOR_MISMATCH_MPS,
        "heading_mismatch_deg": HEADING_MISMATCH_DEG,
        "heading_min_speed_mps": HEADING_MIN_SPEED_MPS,
    }


def get_thresholds(db: Session) -> dict:
    """Read scoring thresholds from the Config table, falling back to module defaults."""
    defaults = default_thresholds()
    rows = db.query(Config).filter(Config.key.in_(defaults.keys())).all()
    for row in rows:
        try:
            defaults[row.key] = float(row.value)
        except ValueError:
            logger.warning("Ignoring non-numeric config value %s=%r", row.key, row.value)
    return defaults


# ---------------------------------------------------------------------------
# Geo math
# ---------------------------------------------------------------------------

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in metres between two points on a spherical Earth."""
    R = 6_371_000  # Earth radius in metres
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, in [0, 360)."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlon = math.radians(lon2 - lon1)
    y = math.sin(dlon) * math.cos(rlat2)
    x = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(dlon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def angular_diff_deg(a: float, b: float) -> float:
    return abs(((a - b + 540) % 360) - 180)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_ping(
    prev: Optional[dict],
    curr: dict,
    token_device_id: Optional[str] = None,
    body_device_id: Optional[str] = None,
    server_now_ms: Optional[int] = None,
    thresholds: dict | None = None,
) -> dict:
    """Score one ping.

    Signals that compare two points (teleport, out_of_order, speed_mismatch,
    heading_mismatch) only fire when ``prev`` is given. ``stale`` is only
    evaluated when ``server_now_ms`` is given.

    Returns {"fraud_signals": list[str], "fraud_score": int, "meta": dict}.
    """
    th = {**default_thresholds(), **(thresholds or {})}
    fired = set()
    meta = {}

    if token_device_id and body_device_id and token_device_id != body_device_id:
        fired.add("device_mismatch")

    if curr.get("mocked") is True:
        fired.add("mocked")

    acc = curr.get("accuracy_m")
    if acc is not None and acc > th["accuracy_ceiling_m"]:
        meta["accuracyM"] = acc
        fired.add("low_accuracy")

    if server_now_ms is not None:
        age_s = (server_now_ms - curr["ts_ms"]) / 1000
        meta["ageS"] = age_s
        if age_s > th["stale_budget_s"]:
            fired.add("stale")

    if prev is not None:
        fired.update(_compare_points(prev, curr, th, meta))

    signals = [name for name in SIGNAL_WEIGHTS if name in fired]
    score = min(MAX_SCORE, sum(SIGNAL_WEIGHTS[name] for name in signals))
    return {"fraud_signals": signals, "fraud_score": score, "meta": meta}


def _compare_points(prev: dict, curr: dict, th: dict, meta: dict) -> set:
    fired = set()

    dt_s = (curr["ts_ms"] - prev["ts_ms"]) / 1000
    dist = haversine_m(prev["lat"], prev["lng"], curr["lat"], curr["lng"])
    meta["dtS"] = dt_s
    meta["distM"] = dist

    if dt_s <= 0:
        fired.add("out_of_order")
        return fired

    implied = dist / dt_s
    meta["impliedSpeedMps"] = implied

    if implied > th["max_plausible_speed_mps"]:
        fired.add("teleport")

    prev_speed, curr_speed = prev.get("speed_mps"), curr.get("speed_mps")
    if prev_speed is not None and curr_speed is not None:
        reported = (prev_speed + curr_speed) / 2
        meta["reportedSpeedMps"] = reported
        if max(reported, implied) >= th["min_speed_for_mismatch_mps"]:
            if abs(reported - implied) > th["speed_mismatch_tolerance"] * implied:
                fired.add("speed_mismatch")

    heading = curr.get("heading_deg")
    if heading is not None and implied > th["heading_min_speed_mps"]:
        brng = bearing_deg(prev["lat"], prev["lng"], curr["lat"], curr["lng"])
        diff = angular_diff_deg(heading, brng)
        meta["bearingDeg"] = brng
        meta["headingDiffDeg"] = diff
        if diff > th["heading_mismatch_deg"]:
            fired.add("heading_mismatch")

    return fired

"""Ping ingestion: load the binding's previous fix, score the new one, store it.

Every accepted ping is stored, whatever its score. The score is advisory and
downstream consumers decide what to do with it.

Two pings for the same binding can race between reading the previous event and
inserting the new one, and both would then be scored against the same baseline.
``BindingLocks`` serializes ingestion per (rider, device) inside one process.
Separate worker processes can still race; that gap is accepted because the
score is telemetry, not an access control.
"""

import logging
import os
import threading
import time
from contextlib import contextmanager, nullcontext

from event_store import LocationEventStore, event_to_point
from fraud import score_ping

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE = "unknown_device"

SERIALIZE_PER_BINDING = os.environ.get("PING_SERIALIZE_PER_BINDING", "1").lower() not in ("0", "false", "no")


class BindingLocks:
    """Registry of one lock per (rider, device) binding.

    Entries are reference counted and dropped once no request holds or waits on
    them, so idle bindings do not accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple, list] = {}

    @contextmanager
    def hold(self, rider_user_id: str, device_id: str):
        key = (rider_user_id, device_id)
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


binding_locks = BindingLocks()


def now_ms() -> int:
    return int(time.time() * 1000)


def resolve_device_id(body_device_id: str | None, token_device_id: str | None) -> str:
    return body_device_id or token_device_id or UNKNOWN_DEVICE


def ingest_ping(
    store: LocationEventStore,
    principal: dict,
    fix: dict,
    body_device_id: str | None = None,
    thresholds: dict | None = None,
    server_now_ms: int | None = None,
    locks: BindingLocks | None = None,
) -> dict:
    """Score and persist one ping for an authenticated principal.

    ``fix`` uses the scorer's point keys plus ``altitude_m`` and ``provider``.
    Store errors propagate to the caller.

    Returns {"accepted": True, "server_ts_ms", "fraud_score", "fraud_signals", "event"}.
    """
    rider_user_id = principal["sub"]
    token_device_id = principal.get("device_id")
    device_id = resolve_device_id(body_device_id, token_device_id)

    guard = locks.hold(rider_user_id, device_id) if locks is not None else nullcontext()
    with guard:
        received_ms = server_now_ms if server_now_ms is not None else now_ms()
        prev_event = store.latest(rider_user_id, device_id)
        prev = event_to_point(prev_event) if prev_event is not None else None

        result = score_ping(
            prev,
            fix,
            token_device_id=token_device_id,
            body_device_id=body_device_id,
            server_now_ms=received_ms,
            thresholds=thresholds,
        )

        event = store.append({
            "rider_user_id": rider_user_id,
            "device_id": device_id,
            "ts_ms": fix["ts_ms"],
            "lat": fix["lat"],
            "lng": fix["lng"],
            "accuracy_m": fix.get("accuracy_m"),
            "altitude_m": fix.get("altitude_m"),
            "speed_mps": fix.get("speed_mps"),
            "heading_deg": fix.get("heading_deg"),
            "mocked": bool(fix.get("mocked")),
            "provider": fix.get("provider") or "unknown",
            "fraud_score": result["fraud_score"],
            "fraud_signals": result["fraud_signals"],
            "meta": result["meta"],
            "server_received_at_ms": received_ms,
        })

    if result["fraud_score"] > 0:
        logger.info(
            "Ping rider=%s device=%s scored %d %s",
            rider_user_id, device_id, result["fraud_score"], ",".join(result["fraud_signals"]),
        )
    else:
        logger.debug("Ping rider=%s device=%s clean", rider_user_id, device_id)

    return {
        "accepted": True,
        "server_ts_ms": received_ms,
        "fraud_score": result["fraud_score"],
        "fraud_signals": result["fraud_signals"],
        "event": event,
    }

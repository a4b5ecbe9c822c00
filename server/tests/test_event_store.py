"""Tests for both LocationEventStore implementations."""

from event_store import event_to_point
from tests.gps_test_fixtures import BASE_TS_MS, RIDE


def _fields(rider="rider_1", device="dev1", ts_ms=BASE_TS_MS, lat=19.0, lng=72.0, **extra):
    fields = {
        "rider_user_id": rider,
        "device_id": device,
        "ts_ms": ts_ms,
        "lat": lat,
        "lng": lng,
        "mocked": False,
        "provider": "gps",
        "fraud_score": 0,
        "fraud_signals": [],
        "meta": {},
        "server_received_at_ms": ts_ms + 200,
    }
    fields.update(extra)
    return fields


class TestLocationEventStore:
    def test_latest_empty(self, store):
        assert store.latest("rider_1", "dev1") is None

    def test_append_assigns_ids(self, store):
        event = store.append(_fields())
        assert event.event_id.startswith("rloc_")
        assert event.id is not None

    def test_latest_is_greatest_timestamp(self, store):
        store.append(_fields(ts_ms=BASE_TS_MS + 3000))
        store.append(_fields(ts_ms=BASE_TS_MS + 6000))
        # replayed old sample inserted last
        store.append(_fields(ts_ms=BASE_TS_MS))
        assert store.latest("rider_1", "dev1").ts_ms == BASE_TS_MS + 6000

    def test_latest_tie_breaks_on_insertion_order(self, store):
        store.append(_fields(lat=1.0))
        store.append(_fields(lat=2.0))
        assert store.latest("rider_1", "dev1").lat == 2.0

    def test_latest_is_scoped_to_binding(self, store):
        store.append(_fields(device="dev1", ts_ms=BASE_TS_MS))
        store.append(_fields(device="dev2", ts_ms=BASE_TS_MS + 9000))
        store.append(_fields(rider="rider_2", device="dev1", ts_ms=BASE_TS_MS + 9000))
        assert store.latest("rider_1", "dev1").ts_ms == BASE_TS_MS
        assert store.latest("rider_1", "dev3") is None

    def test_recent_newest_first_with_limit(self, store):
        for pt in RIDE:
            store.append(_fields(ts_ms=pt["ts_ms"], lat=pt["lat"]))
        events = store.recent("rider_1", limit=3)
        assert [e.ts_ms for e in events] == [p["ts_ms"] for p in reversed(RIDE[-3:])]

    def test_recent_filters_device(self, store):
        store.append(_fields(device="dev1"))
        store.append(_fields(device="dev2"))
        assert len(store.recent("rider_1")) == 2
        assert [e.device_id for e in store.recent("rider_1", device_id="dev2")] == ["dev2"]

    def test_signals_and_meta_round_trip(self, store):
        store.append(_fields(fraud_score=60, fraud_signals=["mocked", "device_mismatch"], meta={"accuracyM": 15.0}))
        event = store.latest("rider_1", "dev1")
        assert event.fraud_signals == ["mocked", "device_mismatch"]
        assert event.meta == {"accuracyM": 15.0}


class TestEventToPoint:
    def test_converts_scorer_fields(self, memory_store):
        event = memory_store.append(_fields(accuracy_m=9.0, speed_mps=8.3, heading_deg=12.0))
        pt = event_to_point(event)
        assert pt == {
            "ts_ms": BASE_TS_MS,
            "lat": 19.0,
            "lng": 72.0,
            "accuracy_m": 9.0,
            "speed_mps": 8.3,
            "heading_deg": 12.0,
            "mocked": False,
        }

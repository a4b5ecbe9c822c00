"""Tests for the LocationTracker state machine."""

import threading

import pytest

from fakes import FakePlatform, sample, BASE_TS_MS
from rider_app.config import TrackerConfig
from rider_app.errors import LocationServicesError
from rider_app.tracker import Idle, LocationTracker, PermissionDenied, ServicesDisabled, Tracking


@pytest.fixture
def published():
    return []


@pytest.fixture
def tracker(platform, published):
    t = LocationTracker(platform)
    t.subscribe(published.append)
    return t


# =====================================================================
# Start-up transitions
# =====================================================================

class TestStart:
    def test_initial_state_is_idle(self, tracker, published):
        assert tracker.state == Idle()
        assert published == [Idle()]

    def test_permission_denied(self, published):
        platform = FakePlatform(permission="denied")
        tracker = LocationTracker(platform)
        tracker.subscribe(published.append)
        tracker.start()
        assert tracker.state == PermissionDenied()
        assert platform.watches == []
        assert "services" not in platform.calls

    def test_services_disabled(self):
        platform = FakePlatform(services=False)
        tracker = LocationTracker(platform)
        tracker.start()
        assert tracker.state == ServicesDisabled()
        assert platform.watches == []

    def test_retry_after_denial(self):
        platform = FakePlatform(permission="denied")
        tracker = LocationTracker(platform)
        tracker.start()
        assert isinstance(tracker.state, PermissionDenied)
        platform.permission = "granted"
        tracker.start()
        assert isinstance(tracker.state, Tracking)
        assert len(platform.watches) == 1

    def test_granted_opens_high_accuracy_watch(self, tracker, platform):
        tracker.start()
        assert tracker.state == Tracking(last_fix=None)
        assert len(platform.watches) == 1
        options = platform.watches[0][0]
        assert options["accuracy"] == "highest"
        assert options["time_interval_ms"] == 2000
        assert options["distance_interval_m"] == 5.0

    def test_checks_run_in_order(self, tracker, platform):
        tracker.start()
        assert platform.calls == ["permission", "services", ("current", "balanced"), "watch"]

    def test_start_while_tracking_is_noop(self, tracker, platform):
        tracker.start()
        tracker.start()
        assert len(platform.watches) == 1
        assert platform.calls.count("permission") == 1

    def test_watch_open_fails_with_services_off(self):
        class Flaky(FakePlatform):
            def watch_position(self, options, callback):
                raise LocationServicesError()

        tracker = LocationTracker(Flaky())
        tracker.start()
        assert tracker.state == ServicesDisabled()


# =====================================================================
# Initial fix
# =====================================================================

class TestInitialFix:
    def test_initial_fix_within_double_ceiling(self):
        platform = FakePlatform(initial=sample(accuracy=160.0))
        tracker = LocationTracker(platform)
        tracker.start()
        assert tracker.state.last_fix.accuracy_m == 160.0

    def test_initial_fix_too_coarse(self):
        platform = FakePlatform(initial=sample(accuracy=160.5))
        tracker = LocationTracker(platform)
        tracker.start()
        assert tracker.state == Tracking(last_fix=None)
        assert len(platform.watches) == 1

    def test_initial_fix_failure_still_watches(self):
        platform = FakePlatform(initial_error=RuntimeError("location unavailable"))
        tracker = LocationTracker(platform)
        tracker.start()
        assert tracker.state == Tracking(last_fix=None)
        assert len(platform.watches) == 1

    def test_initial_fix_factor_is_configurable(self):
        platform = FakePlatform(initial=sample(accuracy=100.0))
        tracker = LocationTracker(platform, TrackerConfig(initial_fix_factor=1.0))
        tracker.start()
        assert tracker.state.last_fix is None


# =====================================================================
# Watch samples
# =====================================================================

class TestWatchSamples:
    def test_accuracy_at_ceiling_is_accepted(self, tracker, platform):
        tracker.start()
        platform.deliver(sample(accuracy=80.0))
        assert tracker.state.last_fix.accuracy_m == 80.0

    def test_accuracy_above_ceiling_is_discarded(self, tracker, platform, published):
        tracker.start()
        platform.deliver(sample(ts_ms=BASE_TS_MS, accuracy=12.0))
        good = tracker.state.last_fix
        count = len(published)
        platform.deliver(sample(ts_ms=BASE_TS_MS + 2000, lat=19.2, accuracy=80.01))
        assert tracker.state.last_fix is good
        assert isinstance(tracker.state, Tracking)
        assert len(published) == count

    def test_unknown_accuracy_is_accepted(self, tracker, platform):
        tracker.start()
        platform.deliver(sample(accuracy=None))
        assert tracker.state.last_fix.accuracy_m is None

    def test_invalid_sample_dropped(self, tracker, platform):
        tracker.start()
        platform.deliver(sample(lat=123.0))
        platform.deliver({"timestamp": BASE_TS_MS})
        assert tracker.state == Tracking(last_fix=None)

    def test_subscribers_see_each_fix(self, tracker, platform, published):
        tracker.start()
        platform.deliver(sample(ts_ms=BASE_TS_MS))
        platform.deliver(sample(ts_ms=BASE_TS_MS + 2000))
        fixes = [s.last_fix.ts_ms for s in published if isinstance(s, Tracking) and s.last_fix]
        assert fixes == [BASE_TS_MS, BASE_TS_MS + 2000]

    def test_mocked_flag_carried(self, tracker, platform):
        tracker.start()
        platform.deliver(sample(mocked=True))
        assert tracker.state.last_fix.mocked is True

    def test_failing_listener_does_not_break_tracking(self, tracker, platform):
        def boom(state):
            if isinstance(state, Tracking) and state.last_fix:
                raise ValueError("ui went away")

        tracker.subscribe(boom)
        tracker.start()
        platform.deliver(sample())
        assert tracker.state.last_fix is not None

    def test_unsubscribe(self, tracker, platform):
        seen = []
        unsubscribe = tracker.subscribe(seen.append)
        unsubscribe()
        tracker.start()
        assert seen == [Idle()]

    def test_concurrent_callbacks(self, tracker, platform):
        tracker.start()
        threads = [
            threading.Thread(target=platform.deliver, args=(sample(ts_ms=BASE_TS_MS + i),))
            for i in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert isinstance(tracker.state, Tracking)
        assert tracker.state.last_fix.ts_ms >= BASE_TS_MS


# =====================================================================
# Stop
# =====================================================================

class TestStop:
    def test_stop_cancels_watch(self, tracker, platform):
        tracker.start()
        tracker.stop()
        assert platform.watches[0][2].removed
        assert tracker.state == Idle()

    def test_stop_is_idempotent(self, tracker, platform, published):
        tracker.start()
        tracker.stop()
        count = len(published)
        tracker.stop()
        assert tracker.state == Idle()
        assert len(published) == count

    def test_no_updates_after_stop(self, tracker, platform, published):
        tracker.start()
        tracker.stop()
        count = len(published)
        platform.deliver(sample())
        assert tracker.state == Idle()
        assert len(published) == count

    def test_late_callback_from_old_watch_ignored(self, tracker, platform):
        tracker.start()
        old_callback = platform.watches[0][1]
        tracker.stop()
        tracker.start()
        old_callback(sample(lat=10.0))
        assert tracker.state == Tracking(last_fix=None)
        platform.deliver(sample(lat=11.0))
        assert tracker.state.last_fix.lat == 11.0

    def test_stop_from_listener_during_start(self, platform):
        tracker = LocationTracker(platform)

        def stop_on_tracking(state):
            if isinstance(state, Tracking):
                tracker.stop()

        tracker.subscribe(stop_on_tracking)
        tracker.start()
        assert tracker.state == Idle()
        assert platform.watches == []

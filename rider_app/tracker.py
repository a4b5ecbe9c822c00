"""Foreground location tracker: a state machine over the platform location API.

States:
    Idle -> start() -> PermissionDenied | ServicesDisabled | Tracking(last_fix)
    any  -> stop()  -> Idle

``start()`` checks permission, then location services, then takes one
balanced-accuracy fix for fast initial placement and opens a continuous
high-accuracy watch. Watch samples with accuracy worse than the configured
ceiling are dropped and the previous fix is kept.

Watch callbacks may arrive on a platform thread. All state changes happen
under one re-entrant lock, and callbacks from a watch that has since been
stopped are ignored, so nothing is published after ``stop()`` returns.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Protocol, Union

from rider_app.config import TrackerConfig
from rider_app.errors import InvalidFixError, LocationPermissionError, LocationServicesError
from rider_app.fixes import Fix, normalize_fix

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tracker states
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    status: ClassVar[str] = "idle"


@dataclass(frozen=True)
class PermissionDenied:
    status: ClassVar[str] = "permission_denied"


@dataclass(frozen=True)
class ServicesDisabled:
    status: ClassVar[str] = "services_disabled"


@dataclass(frozen=True)
class Tracking:
    last_fix: Optional[Fix] = None
    status: ClassVar[str] = "tracking"


TrackerState = Union[Idle, PermissionDenied, ServicesDisabled, Tracking]

Listener = Callable[[TrackerState], None]


# ---------------------------------------------------------------------------
# Platform interface
# ---------------------------------------------------------------------------

class WatchSubscription(Protocol):
    def remove(self) -> None: ...


class LocationPlatform(Protocol):
    """The device location API the tracker drives."""

    def request_foreground_permission(self) -> str:
        """Return "granted" or any other status string."""

    def has_services_enabled(self) -> bool: ...

    def get_current_position(self, accuracy: str) -> dict: ...

    def watch_position(self, options: dict, callback: Callable[[dict], None]) -> WatchSubscription: ...


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

class LocationTracker:
    def __init__(self, platform: LocationPlatform, config: TrackerConfig | None = None):
        self.platform = platform
        self.config = config or TrackerConfig()
        self._lock = threading.RLock()
        self._state: TrackerState = Idle()
        self._listeners: list[Listener] = []
        self._watch: Optional[WatchSubscription] = None
        self._generation = 0
        self._starting = False

    @property
    def state(self) -> TrackerState:
        with self._lock:
            return self._state

    def subscribe(self, fn: Listener) -> Callable[[], None]:
        """Register ``fn``, call it with the current state, return an unsubscribe function."""
        with self._lock:
            self._listeners.append(fn)
            fn(self._state)

        def unsubscribe():
            with self._lock:
                if fn in self._listeners:
                    self._listeners.remove(fn)

        return unsubscribe

    def start(self):
        with self._lock:
            if self._watch is not None or self._starting:
                return
            self._starting = True
            try:
                self._start_locked()
            finally:
                self._starting = False

    def _start_locked(self):
        try:
            self._check_access()
        except LocationPermissionError as e:
            logger.info("Location permission not granted: %s", e)
            self._emit(PermissionDenied())
            return
        except LocationServicesError:
            logger.info("Location services are disabled")
            self._emit(ServicesDisabled())
            return

        self._generation += 1
        generation = self._generation
        self._emit(Tracking())
        self._take_initial_fix(generation)
        if generation != self._generation:
            # stopped by a listener mid-start
            return

        try:
            self._watch = self.platform.watch_position(
                {
                    "accuracy": "highest",
                    "time_interval_ms": self.config.time_interval_ms,
                    "distance_interval_m": self.config.distance_interval_m,
                },
                lambda raw: self._on_sample(generation, raw),
            )
        except LocationServicesError:
            logger.info("Location services went away while opening the watch")
            self._generation += 1
            self._emit(ServicesDisabled())
            return
        logger.info("Location tracking started")

    def stop(self):
        with self._lock:
            self._generation += 1
            if self._watch is not None:
                self._watch.remove()
                self._watch = None
                logger.info("Location tracking stopped")
            if not isinstance(self._state, Idle):
                self._emit(Idle())

    # -- internals ----------------------------------------------------------

    def _check_access(self):
        status = self.platform.request_foreground_permission()
        if status != "granted":
            raise LocationPermissionError(status)
        if not self.platform.has_services_enabled():
            raise LocationServicesError()

    def _take_initial_fix(self, generation: int):
        try:
            fix = normalize_fix(self.platform.get_current_position("balanced"))
        except Exception as e:
            logger.warning("Initial location fix failed: %s", e)
            return
        if generation != self._generation:
            return
        if fix.within_accuracy(self.config.accuracy_ceiling_m * self.config.initial_fix_factor):
            self._emit(Tracking(last_fix=fix))
        else:
            logger.debug("Initial fix too coarse (%.0f m), waiting for watch", fix.accuracy_m)

    def _on_sample(self, generation: int, raw: dict):
        with self._lock:
            if generation != self._generation or not isinstance(self._state, Tracking):
                return
            try:
                fix = normalize_fix(raw)
            except InvalidFixError as e:
                logger.debug("Dropping invalid location sample: %s", e)
                return
            if not fix.within_accuracy(self.config.accuracy_ceiling_m):
                logger.debug("Dropping sample with accuracy %.1f m", fix.accuracy_m)
                return
            self._emit(Tracking(last_fix=fix))

    def _emit(self, state: TrackerState):
        self._state = state
        for fn in list(self._listeners):
            try:
                fn(state)
            except Exception:
                logger.exception("Tracker listener failed")

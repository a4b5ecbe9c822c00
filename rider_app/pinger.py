"""Throttled location pings from tracker updates to the backend.

Pings are a presence stream, not transactions. A ping that fails is dropped:
no retry, no queue. A ping that falls due while the previous request is still
outstanding is dropped too. The next tracker update produces the next attempt.
The send time is recorded before the request goes out, so a slow request does
not let a burst through behind it.
"""

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from rider_app.config import PING_PATH, PingerConfig
from rider_app.errors import NetworkError
from rider_app.fixes import Fix
from rider_app.tracker import TrackerState, Tracking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiderSession:
    user_id: str
    access_token: str


@dataclass(frozen=True)
class PingResult:
    fraud_score: int
    fraud_signals: list[str]
    server_ts_ms: int


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class PingClient:
    """POSTs one fix to the ping endpoint with the rider's bearer token."""

    def __init__(self, base_url: str, timeout_s: float = 10.0, http: requests.Session | None = None):
        self.url = base_url.rstrip("/") + PING_PATH
        self.timeout_s = timeout_s
        self.http = http or requests.Session()

    def post_fix(self, session: RiderSession, device_id: str, fix: Fix) -> PingResult:
        body = fix.to_wire()
        body["deviceId"] = device_id
        try:
            resp = self.http.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {session.access_token}"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Ping request failed: {e}") from e

        if resp.status_code != 200:
            raise NetworkError(f"Ping rejected with status {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
            return PingResult(
                fraud_score=int(data["fraudScore"]),
                fraud_signals=list(data["fraudSignals"]),
                server_ts_ms=int(data["serverTsMs"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise NetworkError(f"Malformed ping response: {e}") from e


# ---------------------------------------------------------------------------
# Fire-and-forget sending
# ---------------------------------------------------------------------------

class BestEffortSender:
    """Runs sends off the caller's thread and drops any failure after logging it.

    At most one send is in flight. A send submitted while the previous one is
    still running is dropped rather than queued, so a slow server never builds
    a backlog of stale fixes. ``submit`` never raises for a failed send; it
    returns None for a dropped submission, otherwise a future that resolves to
    the send's result, or None when the send failed.
    """

    def __init__(self, executor: Executor | None = None):
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="location-ping")
        self._lock = threading.Lock()
        self._in_flight = False
        self.dropped = 0

    def submit(self, fn: Callable, *args) -> Optional[Future]:
        with self._lock:
            if self._in_flight:
                self.dropped += 1
                logger.debug("Dropped location ping: previous send still in flight")
                return None
            self._in_flight = True
        try:
            return self._executor.submit(self._run, fn, *args)
        except Exception:
            self._finish()
            raise

    def _run(self, fn: Callable, *args):
        try:
            return fn(*args)
        except NetworkError as e:
            self._count_drop()
            logger.debug("Dropped location ping: %s", e)
        except Exception:
            self._count_drop()
            logger.exception("Unexpected error sending location ping")
        finally:
            self._finish()
        return None

    def _finish(self):
        with self._lock:
            self._in_flight = False

    def _count_drop(self):
        with self._lock:
            self.dropped += 1

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait)


# ---------------------------------------------------------------------------
# Pinger
# ---------------------------------------------------------------------------

def monotonic_ms() -> float:
    return time.monotonic() * 1000


class LocationPinger:
    """Turns tracker states into at most one ping per ``min_interval_ms``."""

    def __init__(
        self,
        client: PingClient,
        device_id: str,
        session_provider: Callable[[], Optional[RiderSession]],
        config: PingerConfig | None = None,
        sender: BestEffortSender | None = None,
        on_result: Callable[[PingResult], None] | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.client = client
        self.device_id = device_id
        self.session_provider = session_provider
        self.config = config or PingerConfig()
        self.sender = sender or BestEffortSender()
        self.on_result = on_result
        self.clock = clock
        self.last_result: Optional[PingResult] = None
        self._lock = threading.Lock()
        self._last_sent_at: Optional[float] = None
        self._last_fix: Optional[Fix] = None
        self._closed = False

    def attach(self, tracker) -> Callable[[], None]:
        """Subscribe to ``tracker``; returns the unsubscribe function."""
        return tracker.subscribe(self.on_state)

    def on_state(self, state: TrackerState) -> Optional[Future]:
        if not isinstance(state, Tracking) or state.last_fix is None:
            return None
        fix = state.last_fix
        session = self.session_provider()
        if session is None:
            return None

        with self._lock:
            if self._closed or fix == self._last_fix:
                return None
            now = self.clock()
            if self._last_sent_at is not None and now - self._last_sent_at < self.config.min_interval_ms:
                return None
            self._last_sent_at = now
            self._last_fix = fix

        return self.sender.submit(self._send, session, fix)

    def close(self):
        with self._lock:
            self._closed = True
        self.sender.shutdown(wait=False)

    def _send(self, session: RiderSession, fix: Fix) -> PingResult:
        result = self.client.post_fix(session, self.device_id, fix)
        self.last_result = result
        if result.fraud_score > 0:
            logger.info("Ping scored %d (%s)", result.fraud_score, ", ".join(result.fraud_signals))
        if self.on_result is not None:
            self.on_result(result)
        return result

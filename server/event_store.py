"""Append-only persistence of scored location pings.

The ingestion handler depends on the ``LocationEventStore`` shape only, so tests
can swap in ``InMemoryLocationEventStore`` without a database.
"""

import itertools
import uuid
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from models import LocationEvent

EVENT_FIELDS = (
    "rider_user_id", "device_id", "ts_ms", "lat", "lng", "accuracy_m", "altitude_m",
    "speed_mps", "heading_deg", "mocked", "provider", "fraud_score", "fraud_signals",
    "meta", "server_received_at_ms",
)


class LocationEventStore(Protocol):
    def latest(self, rider_user_id: str, device_id: str) -> Optional[LocationEvent]: ...

    def append(self, fields: dict) -> LocationEvent: ...

    def recent(self, rider_user_id: str, device_id: str | None = None, limit: int = 100) -> list[LocationEvent]: ...


def new_event_id() -> str:
    return f"rloc_{uuid.uuid4().hex}"


def event_to_point(event: LocationEvent) -> dict:
    """Convert a stored event into the point dict the scorer consumes."""
    return {
        "ts_ms": event.ts_ms,
        "lat": event.lat,
        "lng": event.lng,
        "accuracy_m": event.accuracy_m,
        "speed_mps": event.speed_mps,
        "heading_deg": event.heading_deg,
        "mocked": event.mocked,
    }


class SqlLocationEventStore:
    """LocationEventStore backed by the ``rider_location_events`` table.

    "Latest" is the event with the greatest client timestamp for the binding,
    ties broken by insertion order. A replayed old sample is stored but never
    becomes the baseline for the next ping.
    """

    def __init__(self, db: Session):
        self.db = db

    def latest(self, rider_user_id: str, device_id: str) -> Optional[LocationEvent]:
        return (
            self.db.query(LocationEvent)
            .filter(LocationEvent.rider_user_id == rider_user_id, LocationEvent.device_id == device_id)
            .order_by(LocationEvent.ts_ms.desc(), LocationEvent.id.desc())
            .first()
        )

    def append(self, fields: dict) -> LocationEvent:
        event = LocationEvent(event_id=new_event_id(), **{k: fields.get(k) for k in EVENT_FIELDS})
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def recent(self, rider_user_id: str, device_id: str | None = None, limit: int = 100) -> list[LocationEvent]:
        query = self.db.query(LocationEvent).filter(LocationEvent.rider_user_id == rider_user_id)
        if device_id is not None:
            query = query.filter(LocationEvent.device_id == device_id)
        return query.order_by(LocationEvent.ts_ms.desc(), LocationEvent.id.desc()).limit(limit).all()


class InMemoryLocationEventStore:
    """List-backed LocationEventStore with the same ordering rules as the SQL store."""

    def __init__(self):
        self.events: list[LocationEvent] = []
        self._ids = itertools.count(1)

    def latest(self, rider_user_id: str, device_id: str) -> Optional[LocationEvent]:
        matches = self.recent(rider_user_id, device_id, limit=1)
        return matches[0] if matches else None

    def append(self, fields: dict) -> LocationEvent:
        event = LocationEvent(id=next(self._ids), event_id=new_event_id(), **{k: fields.get(k) for k in EVENT_FIELDS})
        self.events.append(event)
        return event

    def recent(self, rider_user_id: str, device_id: str | None = None, limit: int = 100) -> list[LocationEvent]:
        matches = [
            e for e in self.events
            if e.rider_user_id == rider_user_id and (device_id is None or e.device_id == device_id)
        ]
        matches.sort(key=lambda e: (e.ts_ms, e.id), reverse=True)
        return matches[:limit]

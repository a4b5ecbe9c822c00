#!/usr/bin/env python3
"""Seed the database with a demo rider session and a short scored ride.

Usage:
    python seed_test_data.py

This issues a bearer token for a demo rider bound to a demo device, then
ingests the Mumbai ride fixture through the normal scoring path, including one
teleport sample so the fraud columns have something to show.
"""

from auth import create_token
from database import SessionLocal, init_db
from event_store import SqlLocationEventStore
from fraud import get_thresholds
from ingestion import ingest_ping
from models import LocationEvent
from tests.gps_test_fixtures import RIDE, TELEPORT_POINT

DEMO_RIDER = "rider_demo"
DEMO_DEVICE = "dev_demo0001"


def seed():
    init_db()
    db = SessionLocal()

    existing = db.query(LocationEvent).filter(LocationEvent.rider_user_id == DEMO_RIDER).first()
    if existing:
        print("Demo rider already has events. Skipping seed.")
        db.close()
        return

    token = create_token(DEMO_RIDER, db, device_id=DEMO_DEVICE)
    principal = {"sub": DEMO_RIDER, "device_id": DEMO_DEVICE}
    store = SqlLocationEventStore(db)
    thresholds = get_thresholds(db)

    for pt in RIDE + [TELEPORT_POINT]:
        result = ingest_ping(
            store, principal, pt, body_device_id=DEMO_DEVICE,
            thresholds=thresholds, server_now_ms=pt["ts_ms"] + 500,
        )
        print(f"  ts={pt['ts_ms']} score={result['fraud_score']:3d} {','.join(result['fraud_signals'])}")

    db.close()
    print(f"\nDone! Bearer token for {DEMO_RIDER}: {token}")


if __name__ == "__main__":
    seed()

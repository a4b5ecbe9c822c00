"""REST API endpoints for the rider app (location pings and scored event history)."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import decode_token
from database import get_db
from event_store import SqlLocationEventStore
from fraud import get_thresholds
from ingestion import SERIALIZE_PER_BINDING, binding_locks, ingest_ping

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/rider")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class LocationPingRequest(BaseModel):
    ts_ms: int = Field(..., alias="tsMs", ge=0, description="Client clock, epoch milliseconds")
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy_m: Optional[float] = Field(None, alias="accuracyM", ge=0)
    altitude_m: Optional[float] = Field(None, alias="altitudeM")
    speed_mps: Optional[float] = Field(None, alias="speedMps", ge=0)
    heading_deg: Optional[float] = Field(None, alias="headingDeg", ge=0, le=360)
    mocked: Optional[bool] = None
    provider: Optional[Literal["gps", "network", "fused", "unknown"]] = None
    device_id: Optional[str] = Field(None, alias="deviceId", max_length=128)

    class Config:
        populate_by_name = True


class LocationPingResponse(BaseModel):
    accepted: bool
    server_ts_ms: int = Field(..., alias="serverTsMs")
    fraud_signals: list[str] = Field(..., alias="fraudSignals")
    fraud_score: int = Field(..., alias="fraudScore")

    class Config:
        populate_by_name = True


class LocationEventResponse(BaseModel):
    id: str
    device_id: str = Field(..., alias="deviceId")
    ts_ms: int = Field(..., alias="tsMs")
    lat: float
    lng: float
    accuracy_m: Optional[float] = Field(None, alias="accuracyM")
    speed_mps: Optional[float] = Field(None, alias="speedMps")
    heading_deg: Optional[float] = Field(None, alias="headingDeg")
    mocked: bool
    provider: str
    fraud_score: int = Field(..., alias="fraudScore")
    fraud_signals: list[str] = Field(..., alias="fraudSignals")
    server_received_at_ms: int = Field(..., alias="serverReceivedAtMs")

    class Config:
        populate_by_name = True


# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------

def get_current_principal(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)) -> dict:
    """Resolve the bearer token to {"sub": rider user id, "device_id": bound device or None}."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    payload = decode_token(authorization[7:], db)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return payload


def get_event_store(db: Session = Depends(get_db)) -> SqlLocationEventStore:
    return SqlLocationEventStore(db)


# ---------------------------------------------------------------------------
# Location endpoints
# ---------------------------------------------------------------------------

@router.post("/location/ping", response_model=LocationPingResponse)
def location_ping(
    ping: LocationPingRequest,
    principal: dict = Depends(get_current_principal),
    store=Depends(get_event_store),
    db: Session = Depends(get_db),
):
    fix = ping.model_dump(exclude={"device_id"})
    try:
        result = ingest_ping(
            store,
            principal,
            fix,
            body_device_id=ping.device_id,
            thresholds=get_thresholds(db),
            locks=binding_locks if SERIALIZE_PER_BINDING else None,
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store location event for rider=%s", principal["sub"])
        raise HTTPException(status_code=500, detail="Failed to store location event")

    return LocationPingResponse(
        accepted=True,
        server_ts_ms=result["server_ts_ms"],
        fraud_signals=result["fraud_signals"],
        fraud_score=result["fraud_score"],
    )


@router.get("/location/events", response_model=list[LocationEventResponse])
def get_location_events(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    limit: int = 100,
    principal: dict = Depends(get_current_principal),
    store=Depends(get_event_store),
):
    """Most recent scored events for the authenticated rider, newest first."""
    limit = max(1, min(limit, 1000))
    events = store.recent(principal["sub"], device_id=device_id, limit=limit)
    return [
        LocationEventResponse(
            id=e.event_id,
            device_id=e.device_id,
            ts_ms=e.ts_ms,
            lat=e.lat,
            lng=e.lng,
            accuracy_m=e.accuracy_m,
            speed_mps=e.speed_mps,
            heading_deg=e.heading_deg,
            mocked=e.mocked,
            provider=e.provider,
            fraud_score=e.fraud_score,
            fraud_signals=list(e.fraud_signals or []),
            server_received_at_ms=e.server_received_at_ms,
        )
        for e in events
    ]

"""SQLAlchemy models for rider sessions, scored location events, and config."""

import datetime
from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Float, Index, Integer, String

from database import Base


class Session(Base):
    """An issued bearer token bound to a rider and the device it was issued on."""

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    device_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)


class LocationEvent(Base):
    """One scored ping. Append-only: rows are never updated by the ingestion path."""

    __tablename__ = "rider_location_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, nullable=False)
    rider_user_id = Column(String, nullable=False, index=True)
    device_id = Column(String, nullable=False, index=True)
    ts_ms = Column(BigInteger, nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    accuracy_m = Column(Float, nullable=True)
    altitude_m = Column(Float, nullable=True)
    speed_mps = Column(Float, nullable=True)
    heading_deg = Column(Float, nullable=True)
    mocked = Column(Boolean, nullable=False, default=False)
    provider = Column(String, nullable=False, default="unknown")
    fraud_score = Column(Integer, nullable=False, default=0)
    fraud_signals = Column(JSON, nullable=False, default=list)
    meta = Column(JSON, nullable=False, default=dict)
    server_received_at_ms = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_rider_location_events_binding_ts", "rider_user_id", "device_id", "ts_ms"),
    )


class Config(Base):
    """Key/value overrides for scoring thresholds."""

    __tablename__ = "config"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)

"""SQLAlchemy engine, session factory and schema bootstrap for the ping store."""

import logging
import os

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///locations.db")

# SQLite connections are shared across FastAPI's worker threads
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency yielding one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create missing tables, backfill added columns, seed scoring thresholds."""
    from models import Config, LocationEvent, Session  # noqa: F401

    logger.info("Initializing database at %s", DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    _migrate()
    _seed_config()


# Columns added to rider_location_events after its first release
_ADDED_EVENT_COLUMNS = {
    "heading_deg": "FLOAT",
    "meta": "JSON",
}


def _migrate():
    insp = inspect(engine)
    if "rider_location_events" not in insp.get_table_names():
        return
    present = {c["name"] for c in insp.get_columns("rider_location_events")}
    for name, ddl_type in _ADDED_EVENT_COLUMNS.items():
        if name not in present:
            logger.info("Migrating: adding %s column to rider_location_events", name)
            with engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE rider_location_events ADD COLUMN {name} {ddl_type}"))


# Threshold overrides read by fraud.get_thresholds(); values mirror fraud.py defaults
DEFAULT_THRESHOLDS = {
    "accuracy_ceiling_m": "80.0",
    "stale_budget_s": "120",
    "max_plausible_speed_mps": "55.0",
    "speed_mismatch_tolerance": "0.40",
    "min_speed_for_mismatch_mps": "0.0",
    "heading_mismatch_deg": "75.0",
    "heading_min_speed_mps": "2.0",
}


def _seed_config():
    from models import Config

    db = SessionLocal()
    try:
        existing = {row.key for row in db.query(Config.key)}
        missing = {k: v for k, v in DEFAULT_THRESHOLDS.items() if k not in existing}
        db.add_all(Config(key=k, value=v) for k, v in missing.items())
        db.commit()
        if missing:
            logger.info("Seeded scoring thresholds: %s", ", ".join(sorted(missing)))
    finally:
        db.close()

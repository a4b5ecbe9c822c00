"""Run the rider location backend: NiceGUI hosts the FastAPI ping routes."""

import logging
import logging.handlers
import os

from nicegui import app, ui

from api import router
from database import engine, init_db
from ingestion import SERIALIZE_PER_BINDING

LOG_DIR = os.environ.get("LOG_DIR", "/data" if os.path.isdir("/data") else ".")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging(log_dir: str = LOG_DIR, level: str = LOG_LEVEL):
    """Console plus a rotating file under ``log_dir``."""
    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, "rider-location.log"), maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(), file_handler],
    )
    for noisy in ("watchfiles", "multipart", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger("riderlocation")


def _startup():
    init_db()
    logger.info(
        "Rider location API ready (per-binding serialization %s)",
        "on" if SERIALIZE_PER_BINDING else "off",
    )


app.include_router(router)
app.on_startup(_startup)
app.on_shutdown(engine.dispose)

if __name__ in {"__main__", "__mp_main__"}:
    ui.run(
        title="Rider Location",
        port=int(os.environ.get("PORT", "8080")),
        storage_secret=os.environ.get("STORAGE_SECRET", "change-me-in-production"),
        show=False,
        reload=False,
    )

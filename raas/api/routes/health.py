"""GET /health"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..deps import get_db

router = APIRouter()
logger = logging.getLogger("raas.api")

_start_time = time.monotonic()


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check — verifies DB connectivity."""
    db_ok = False
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unreachable: %s", exc)

    return {
        "status": "ok" if db_ok else "degraded",
        "version": "0.1.0",
        "db_connected": db_ok,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }

"""Liveness endpoint with a database round-trip."""

import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text

from server.dependencies import get_session_factory
from server.schemas.responses import HealthResponseDTO
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


def _ping_database(session_factory) -> str:
    db = session_factory()
    try:
        db.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        logger.warning("Database health check failed", extra={"extra_fields": {"error": str(e)}})
        return "unavailable"
    finally:
        db.close()


@router.get("/health", response_model=HealthResponseDTO)
async def health_check(session_factory=Depends(get_session_factory)):
    database = await asyncio.to_thread(_ping_database, session_factory)
    return HealthResponseDTO(
        status="healthy" if database == "ok" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks={"database": database},
    )

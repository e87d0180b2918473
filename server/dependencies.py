"""FastAPI dependencies for authentication, the agent and persistence."""

import os

from fastapi import Depends, Header, HTTPException, Request, status

from db.session import SessionLocal
from models.errors import ConfigError
from server.utils import redact_sensitive_headers
from utils.api_key_utils import user_id_for_api_key
from utils.logger import get_logger
from utils.telemetry import Telemetry, get_telemetry

logger = get_logger(__name__)


async def get_api_key(request: Request, x_api_key: str | None = Header(None)):
    """Validate API key from X-API-Key header."""
    valid_keys_str = os.getenv("API_KEYS", "")
    request_id = getattr(request.state, "request_id", "unknown")
    redacted_headers = redact_sensitive_headers(dict(request.headers))

    if not valid_keys_str:
        logger.error(
            "API authentication not configured",
            extra={"extra_fields": {"request_id": request_id, "headers": redacted_headers}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API authentication not configured",
        )

    valid_keys = [k.strip() for k in valid_keys_str.split(",") if k.strip()]

    if not x_api_key or x_api_key not in valid_keys:
        logger.warning(
            "API authentication failed",
            extra={"extra_fields": {"request_id": request_id, "headers": redacted_headers}},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key"
        )

    return x_api_key


async def get_current_user(api_key: str = Depends(get_api_key)) -> str:
    """User id for the authenticated key."""
    return user_id_for_api_key(api_key)


def get_agent_loop():
    """Dependency to get the agent loop instance (singleton pattern)."""
    from orchestrator.agent_loop import create_agent_loop_from_env

    if not hasattr(get_agent_loop, "_instance"):
        try:
            get_agent_loop._instance = create_agent_loop_from_env()
        except ConfigError as e:
            logger.error(
                "Agent is not configured",
                extra={"extra_fields": {"setting": e.setting}},
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
            ) from e
    return get_agent_loop._instance


def get_session_factory():
    """Callable returning a new SQLAlchemy session (overridden in tests)."""
    return SessionLocal


def get_tracer() -> Telemetry:
    return get_telemetry()

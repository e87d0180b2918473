"""Shared utilities for FastAPI routes."""

import json
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, status

MAX_HISTORY_MESSAGES = 50
MAX_HISTORY_CHARS = 100_000
SENSITIVE_HEADERS = {"x-api-key", "authorization"}


def validate_history(messages: list) -> None:
    """Reject conversations that are empty or too large to send to the model."""
    if not messages:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No messages provided")
    if len(messages) > MAX_HISTORY_MESSAGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Conversation exceeds {MAX_HISTORY_MESSAGES} messages",
        )
    total_chars = sum(len(m.text) for m in messages)
    if total_chars > MAX_HISTORY_CHARS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Conversation exceeds {MAX_HISTORY_CHARS} characters",
        )


def to_ndjson(payload: dict[str, Any]) -> str:
    """One newline-delimited JSON frame."""
    return json.dumps(payload, default=str, ensure_ascii=False) + "\n"


def redact_sensitive_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Redact auth-bearing headers before logging.
    """
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS and value:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted

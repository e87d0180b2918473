"""Streaming chat endpoint backed by the research agent."""

import asyncio
import math
import uuid
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from db.chat_repository import chat_exists_for_other_user, upsert_chat
from models.chat import ChatMessage, chat_title
from models.errors import BackendError, ChatNotFoundError, RateLimitExceeded
from models.stream import DoneWithUsage
from orchestrator.agent_loop import AgentLoop
from server.dependencies import get_agent_loop, get_current_user, get_session_factory, get_tracer
from server.schemas.requests import ChatRequest
from server.utils import to_ndjson, validate_history
from utils.cancellation import CancellationToken
from utils.logger import get_logger
from utils.telemetry import Telemetry

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["Chat"])

ERROR_MESSAGE = "Oops, an error occurred!"


def _save_chat(session_factory, user_id: str, chat_id: str, messages: list[ChatMessage]) -> None:
    db = session_factory()
    try:
        upsert_chat(db, user_id, chat_id, chat_title(messages), messages)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _is_foreign_chat(session_factory, user_id: str, chat_id: str) -> bool:
    db = session_factory()
    try:
        return chat_exists_for_other_user(db, user_id, chat_id)
    finally:
        db.close()


async def _admit(agent: AgentLoop, user_id: str, request_id: str) -> None:
    try:
        await agent.admit(user_id)
    except RateLimitExceeded as e:
        logger.warning(
            "Chat request rate limited",
            extra={"extra_fields": {"request_id": request_id, "reset_in_ms": e.reset_in_ms}},
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={"Retry-After": str(max(1, math.ceil(e.reset_in_ms / 1000)))},
        ) from e
    except BackendError as e:
        logger.error(
            "Rate limit store unavailable",
            extra={"extra_fields": {"request_id": request_id, "error": str(e)}},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiting backend unavailable",
        ) from e


@router.post("/chat")
async def chat(
    request: ChatRequest,
    http_request: Request,
    user_id: str = Depends(get_current_user),
    agent: AgentLoop = Depends(get_agent_loop),
    session_factory=Depends(get_session_factory),
    tracer: Telemetry = Depends(get_tracer),
):
    """
    Run one agent turn and stream it as newline-delimited JSON frames.

    Frame types: new_chat_created, text-delta, tool-call, tool-result,
    finish and error. The chat is saved once the turn finishes.
    """
    request_id = getattr(http_request.state, "request_id", "unknown")
    messages = [m.to_chat_message() for m in request.messages]
    validate_history(messages)

    chat_id = request.chat_id
    is_new_chat = chat_id is None
    if not is_new_chat:
        with tracer.span("validate-chat-ownership", chat_id=chat_id):
            foreign = await asyncio.to_thread(_is_foreign_chat, session_factory, user_id, chat_id)
        if foreign:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    await _admit(agent, user_id, request_id)

    if is_new_chat:
        chat_id = str(uuid.uuid4())
        with tracer.span("create-new-chat", chat_id=chat_id):
            await asyncio.to_thread(_save_chat, session_factory, user_id, chat_id, messages)

    cancel = CancellationToken()

    async def frames() -> AsyncIterator[str]:
        done: DoneWithUsage | None = None
        try:
            if is_new_chat:
                yield to_ndjson({"type": "new_chat_created", "chatId": chat_id})

            async for frame in agent.run_agent_turn(messages, request.max_steps, cancel):
                if isinstance(frame, DoneWithUsage):
                    done = frame
                yield to_ndjson(frame.to_dict())
        except Exception:
            logger.error(
                "Agent turn failed",
                exc_info=True,
                extra={"extra_fields": {"request_id": request_id, "chat_id": chat_id}},
            )
            yield to_ndjson({"type": "error", "message": ERROR_MESSAGE})
            return
        finally:
            if done is None:
                cancel.cancel("client disconnected")

        if done.outcome == "cancelled":
            return
        try:
            with tracer.span("update-chat", chat_id=chat_id, outcome=done.outcome):
                await asyncio.to_thread(_save_chat, session_factory, user_id, chat_id, done.transcript)
        except ChatNotFoundError:
            logger.warning(
                "Chat changed owner during the turn; not saved",
                extra={"extra_fields": {"request_id": request_id, "chat_id": chat_id}},
            )
        except Exception:
            logger.error(
                "Failed to save chat",
                exc_info=True,
                extra={"extra_fields": {"request_id": request_id, "chat_id": chat_id}},
            )

    return StreamingResponse(
        frames(),
        media_type="application/x-ndjson",
        headers={"X-Chat-Id": chat_id, "Cache-Control": "no-cache"},
    )

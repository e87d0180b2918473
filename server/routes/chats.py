"""Chat history endpoints."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, status

from db.chat_repository import get_chat, get_chats
from server.dependencies import get_current_user, get_session_factory
from server.schemas.responses import ChatDetailDTO, ChatListResponseDTO, ChatSummaryDTO

router = APIRouter(prefix="/v1", tags=["History"])


def _with_session(session_factory, fn, *args):
    db = session_factory()
    try:
        return fn(db, *args)
    finally:
        db.close()


@router.get("/chats", response_model=ChatListResponseDTO)
async def list_chats(
    user_id: str = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    """The caller's chats, most recently updated first."""
    rows = await asyncio.to_thread(_with_session, session_factory, get_chats, user_id)
    return ChatListResponseDTO(chats=[ChatSummaryDTO.from_row(r) for r in rows])


@router.get("/chats/{chat_id}", response_model=ChatDetailDTO)
async def read_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
):
    chat = await asyncio.to_thread(_with_session, session_factory, get_chat, user_id, chat_id)
    if chat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return ChatDetailDTO.from_chat(chat)

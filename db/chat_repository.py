"""
Repository functions for chats and their messages.
SQLAlchemy Core against the tables in db.tables.

Design principles:
- Functions do NOT commit - caller commits for transaction control
- A chat owned by someone else is indistinguishable from a missing chat
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, desc, insert, select, update
from sqlalchemy.orm import Session

from db.tables import chats, messages
from models.chat import ChatMessage, MessagePart
from models.errors import ChatNotFoundError
from utils.logger import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _message_parts(message: ChatMessage) -> list[dict[str, Any]]:
    if message.parts:
        return [p.to_dict() for p in message.parts]
    return [MessagePart.text_part(message.content).to_dict()]


def upsert_chat(
    db: Session,
    user_id: str,
    chat_id: str,
    title: str,
    chat_messages: list[ChatMessage],
) -> None:
    """
    Create a chat or replace the messages of an existing one.

    Messages are rewritten in full with ids "<chat_id>-<index>" and 1-based order.

    Raises:
        ChatNotFoundError: the chat exists but belongs to a different user

    Note:
        Does NOT commit. Caller must commit.
    """
    existing = db.execute(select(chats.c.user_id).where(chats.c.id == chat_id)).first()
    now = _now()

    if existing is not None:
        if existing.user_id != user_id:
            logger.warning(
                "Chat ownership mismatch",
                extra={"extra_fields": {"chat_id": chat_id}},
            )
            raise ChatNotFoundError(chat_id)
        db.execute(delete(messages).where(messages.c.chat_id == chat_id))
        db.execute(update(chats).where(chats.c.id == chat_id).values(title=title, updated_at=now))
    else:
        db.execute(
            insert(chats).values(id=chat_id, user_id=user_id, title=title, created_at=now, updated_at=now)
        )

    if chat_messages:
        db.execute(
            insert(messages),
            [
                {
                    "id": f"{chat_id}-{index}",
                    "chat_id": chat_id,
                    "role": message.role,
                    "parts": _message_parts(message),
                    "order": index + 1,
                    "created_at": now,
                }
                for index, message in enumerate(chat_messages)
            ],
        )

    logger.debug(
        "Upserted chat",
        extra={"extra_fields": {"chat_id": chat_id, "messages": len(chat_messages), "created": existing is None}},
    )


def chat_exists_for_other_user(db: Session, user_id: str, chat_id: str) -> bool:
    owner = db.execute(select(chats.c.user_id).where(chats.c.id == chat_id)).scalar_one_or_none()
    return owner is not None and owner != user_id


def get_chat(db: Session, user_id: str, chat_id: str) -> dict[str, Any] | None:
    """
    Get one chat with its messages in order.

    Returns:
        dict with id, title, created_at, updated_at and messages (list[ChatMessage]),
        or None when the chat does not exist or belongs to another user
    """
    chat = db.execute(
        select(chats).where(chats.c.id == chat_id, chats.c.user_id == user_id)
    ).first()
    if chat is None:
        return None

    rows = db.execute(
        select(messages).where(messages.c.chat_id == chat_id).order_by(messages.c["order"])
    ).fetchall()

    return {
        "id": chat.id,
        "title": chat.title,
        "created_at": chat.created_at,
        "updated_at": chat.updated_at,
        "messages": [
            ChatMessage(
                id=row.id,
                role=row.role,
                parts=[MessagePart.from_dict(p) for p in row.parts or []],
            )
            for row in rows
        ],
    }


def get_chats(db: Session, user_id: str) -> list[dict[str, Any]]:
    """List a user's chats, most recently updated first (without messages)."""
    rows = db.execute(
        select(chats).where(chats.c.user_id == user_id).order_by(desc(chats.c.updated_at))
    ).fetchall()
    return [dict(row._mapping) for row in rows]

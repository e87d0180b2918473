"""
Database package for DeepSearch.
Provides SQLAlchemy engine, session management, table definitions, and chat repository functions.
"""

from db.chat_repository import chat_exists_for_other_user, get_chat, get_chats, upsert_chat
from db.engine import get_engine
from db.session import SessionLocal, get_db
from db.tables import chats, init_db, messages, metadata

__all__ = [
    "SessionLocal",
    "chat_exists_for_other_user",
    "chats",
    "get_chat",
    "get_chats",
    "get_db",
    "get_engine",
    "init_db",
    "messages",
    "metadata",
    "upsert_chat",
]

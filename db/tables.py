"""
Table definitions for chat persistence.

Chats belong to one user; messages belong to one chat and are kept in
`order` so a conversation reloads exactly as it was saved.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Engine,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

from db.engine import get_engine
from utils.logger import get_logger

logger = get_logger(__name__)

metadata = MetaData()

chats = Table(
    "chats",
    metadata,
    Column("id", String(128), primary_key=True),
    Column("user_id", String(128), nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

messages = Table(
    "messages",
    metadata,
    Column("id", String(160), primary_key=True),
    Column("chat_id", String(128), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("role", String(32), nullable=False),
    Column("parts", JSON, nullable=False),
    Column("order", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)


def init_db(engine: Engine | None = None) -> None:
    """Create missing tables. Existing tables are left untouched."""
    engine = engine or get_engine()
    metadata.create_all(engine)
    logger.info("Database tables ready", extra={"extra_fields": {"tables": sorted(metadata.tables)}})

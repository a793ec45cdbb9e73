"""Create and upgrade the chat_messages table in place.

Older deployments created the table before the moderation and automation
columns existed. Each optional column is added only when missing, so the
upgrade can run on every startup.
"""

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from chatbridge.database import Base
from chatbridge.logging_config import get_logger
from chatbridge.models import ChatMessage

logger = get_logger("schema_migration")

OPTIONAL_COLUMNS = (
    ("ip_hash", "VARCHAR(64)"),
    ("is_suspicious", "BOOLEAN DEFAULT FALSE"),
    ("sender_info", "JSON"),
    ("is_automated", "BOOLEAN DEFAULT FALSE"),
)


def upgrade_message_schema(engine: Engine) -> list[str]:
    """Add missing optional columns. Returns the names of columns added."""
    table = ChatMessage.__tablename__
    inspector = inspect(engine)
    if not inspector.has_table(table):
        return []

    existing = {column["name"] for column in inspector.get_columns(table)}
    added = []
    with engine.begin() as conn:
        for name, ddl in OPTIONAL_COLUMNS:
            if name in existing:
                continue
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
            added.append(name)

    if added:
        logger.info("Message schema upgraded", extra={"context": {"event": "schema_upgraded", "columns": added}})
    return added


def ensure_schema(engine: Engine) -> list[str]:
    Base.metadata.create_all(bind=engine, tables=[ChatMessage.__table__])
    return upgrade_message_schema(engine)

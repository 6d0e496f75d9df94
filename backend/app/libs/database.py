"""Database connection helper."""

import asyncpg

from app.libs.settings import get_settings

DOCUMENTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    path TEXT PRIMARY KEY,
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    revision BIGINT NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS documents_collection_idx ON documents (collection);
"""

CHANGES_CHANNEL = "documents_changed"


async def get_db_connection():
    """Get database connection."""
    return await asyncpg.connect(get_settings().database_url)


async def ensure_schema() -> None:
    """Create the documents table if it does not exist yet."""
    conn = await get_db_connection()
    try:
        await conn.execute(DOCUMENTS_SCHEMA)
    finally:
        await conn.close()

"""Postgres document store.

Stores each document as a JSONB row in the `documents` table created by the
database module's schema manager.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from database import init_db, DatabaseError
from . import DocumentStore, DocumentStoreError

logger = logging.getLogger(__name__)

DB_ERRORS = (asyncpg.PostgresError, DatabaseError, OSError)

class PostgresDocumentStore(DocumentStore):
    """Document store over an asyncpg pool"""

    def __init__(self, pool: Optional[asyncpg.Pool] = None, db_url: Optional[str] = None):
        super().__init__()
        self.pool = pool
        self.db_url = db_url

    async def ensure_pool(self) -> asyncpg.Pool:
        """Ensure we have a database pool."""
        if self.pool is None:
            self.pool = await init_db(self.db_url)
        return self.pool

    async def _read(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            pool = await self.ensure_pool()
            async with pool.acquire() as conn:
                body = await conn.fetchval('SELECT body FROM documents WHERE name = $1', name)
        except DB_ERRORS as e:
            logger.error(f"Failed to read document {name}: {e}")
            raise DocumentStoreError(f"Failed to read document: {e}", name) from e

        if body is None:
            return None
        return json.loads(body) if isinstance(body, str) else body

    async def _write(self, name: str, document: Dict[str, Any]) -> None:
        try:
            pool = await self.ensure_pool()
            async with pool.acquire() as conn:
                await conn.execute(
                    '''
                    INSERT INTO documents (name, body, updated_at)
                    VALUES ($1, $2::jsonb, now())
                    ON CONFLICT (name) DO UPDATE
                    SET body = EXCLUDED.body, updated_at = now()
                    ''',
                    name,
                    json.dumps(document)
                )
        except DB_ERRORS as e:
            logger.error(f"Failed to write document {name}: {e}")
            raise DocumentStoreError(f"Failed to write document: {e}", name) from e

    async def _list(self) -> List[str]:
        try:
            pool = await self.ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch('SELECT name FROM documents ORDER BY name')
        except DB_ERRORS as e:
            raise DocumentStoreError(f"Failed to list documents: {e}") from e
        return [row['name'] for row in rows]

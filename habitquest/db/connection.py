"""Database connection management"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from habitquest import config
from habitquest.db.store import DocumentStore

logger = logging.getLogger(__name__)


class Database:
    """Database connection pool manager"""

    def __init__(self, connection_string: str = config.DATABASE_URL):
        self.connection_string = connection_string
        self._pool: Optional[AsyncConnectionPool] = None

    async def init_pool(self) -> None:
        """Initialize connection pool"""
        logger.info("Initializing database connection pool")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=2,
            max_size=10,
            open=False
        )
        await self._pool.open()

    async def close_pool(self) -> None:
        """Close connection pool"""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get database connection from pool"""
        if not self._pool:
            raise RuntimeError("Database pool not initialized")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn


async def create_document_store(backend: Optional[str] = None) -> DocumentStore:
    """
    Build the configured document store

    Args:
        backend: 'memory' or 'postgres' (defaults to STORE_BACKEND)
    """
    backend = (backend or config.STORE_BACKEND).lower()

    if backend == "postgres":
        from habitquest.db.postgres_store import PostgresDocumentStore

        database = Database(config.DATABASE_URL)
        await database.init_pool()
        store = PostgresDocumentStore(database)
        await store.ensure_schema()
        logger.info("Using PostgreSQL document store")
        return store

    from habitquest.db.memory_store import InMemoryDocumentStore

    logger.info("Using in-memory document store")
    return InMemoryDocumentStore()

"""
PostgreSQL document store

All collections share one JSONB table. Increments and compare-and-set updates
are single UPDATE statements, so concurrent writers never lose each other's
balance changes.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg.types.json import Jsonb

from habitquest.db.connection import Database
from habitquest.db.store import Document, DocumentStore, Filter
from habitquest.exceptions import (
    ConflictError,
    RecordNotFoundError,
    wrap_external_exception,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (collection, id)
);
CREATE INDEX IF NOT EXISTS documents_data_gin ON documents USING GIN (data jsonb_path_ops);
"""

# Filter operator -> SQL operator on jsonb values
SQL_OPERATORS = {
    "==": "=",
    "!=": "<>",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
}


class PostgresDocumentStore(DocumentStore):
    """JSONB-backed store on a psycopg connection pool"""

    def __init__(self, database: Database):
        super().__init__()
        self.db = database

    async def ensure_schema(self) -> None:
        """Create the documents table if missing"""
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(SCHEMA_SQL)
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="ensure_schema")
        logger.info("Document schema ready")

    async def close(self) -> None:
        await super().close()
        await self.db.close_pool()

    async def _do_create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO documents (collection, id, data)
                        VALUES (%s, %s, %s)
                        ON CONFLICT (collection, id) DO NOTHING
                        RETURNING id, data
                        """,
                        (collection, doc_id, Jsonb(data))
                    )
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="store.create", context={"collection": collection})

        if not row:
            raise ConflictError(
                f"{collection}/{doc_id} already exists",
                record_type=collection,
                record_id=doc_id,
            )
        return Document(id=row["id"], data=row["data"])

    async def _do_get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "SELECT id, data FROM documents WHERE collection = %s AND id = %s",
                        (collection, doc_id)
                    )
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="store.get", context={"collection": collection})

        return Document(id=row["id"], data=row["data"]) if row else None

    async def _do_update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]],
    ) -> Document:
        sql = """
            UPDATE documents
            SET data = data || %s, updated_at = CURRENT_TIMESTAMP
            WHERE collection = %s AND id = %s
        """
        params: list = [Jsonb(fields), collection, doc_id]
        for key, value in (expected or {}).items():
            # Whole-value equality; a missing key compares as null
            sql += " AND COALESCE(data -> %s, 'null'::jsonb) = %s"
            params.extend([key, Jsonb(value)])
        sql += " RETURNING id, data"

        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="store.update", context={"collection": collection})

        if row:
            return Document(id=row["id"], data=row["data"])

        if await self._do_get(collection, doc_id) is None:
            raise RecordNotFoundError(
                f"{collection}/{doc_id} does not exist",
                record_type=collection,
                record_id=doc_id,
            )
        raise ConflictError(
            f"{collection}/{doc_id}: precondition {expected} no longer holds",
            record_type=collection,
            record_id=doc_id,
        )

    async def _do_increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int,
        minimum: Optional[float],
    ) -> Document:
        sql = """
            UPDATE documents
            SET data = jsonb_set(
                    data,
                    ARRAY[%s],
                    to_jsonb(COALESCE((data ->> %s)::numeric, 0) + %s)
                ),
                updated_at = CURRENT_TIMESTAMP
            WHERE collection = %s AND id = %s
        """
        params: list = [field_name, field_name, amount, collection, doc_id]
        if minimum is not None:
            sql += " AND COALESCE((data ->> %s)::numeric, 0) + %s >= %s"
            params.extend([field_name, amount, minimum])
        sql += " RETURNING id, data"

        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="store.increment", context={"collection": collection})

        if row:
            return Document(id=row["id"], data=row["data"])

        if minimum is None or await self._do_get(collection, doc_id) is None:
            raise RecordNotFoundError(
                f"{collection}/{doc_id} does not exist",
                record_type=collection,
                record_id=doc_id,
            )
        raise ConflictError(
            f"{collection}/{doc_id}: {field_name} cannot change by {amount} without going below {minimum}",
            record_type=collection,
            record_id=doc_id,
        )

    async def _do_delete(self, collection: str, doc_id: str) -> bool:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "DELETE FROM documents WHERE collection = %s AND id = %s",
                        (collection, doc_id)
                    )
                    deleted = cur.rowcount > 0
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="store.delete", context={"collection": collection})
        return deleted

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Document]:
        clauses = ["collection = %s"]
        params: list = [collection]

        for f in filters:
            if f.op == "in":
                values = list(f.value)
                if not values:
                    return []
                placeholders = ", ".join(["%s"] * len(values))
                clauses.append(f"(data -> %s) IN ({placeholders})")
                params.append(f.field)
                params.extend(Jsonb(v) for v in values)
            else:
                clauses.append(f"(data -> %s) {SQL_OPERATORS[f.op]} %s")
                params.extend([f.field, Jsonb(f.value)])

        sql = f"SELECT id, data FROM documents WHERE {' AND '.join(clauses)}"
        if order_by:
            sql += f" ORDER BY (data -> %s) {'DESC' if descending else 'ASC'}, id ASC"
            params.append(order_by)
        else:
            sql += " ORDER BY id ASC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        if offset:
            sql += " OFFSET %s"
            params.append(offset)

        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="store.query", context={"collection": collection})

        return [Document(id=row["id"], data=row["data"]) for row in rows]

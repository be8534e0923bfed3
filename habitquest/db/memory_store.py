"""
In-process document store

Default backend for development and tests. Each operation completes without
yielding to the event loop between its read and its write, so increments and
compare-and-set updates are atomic within the process. Nothing is persisted.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence

from habitquest.db.store import Document, DocumentStore, Filter
from habitquest.exceptions import ConflictError, RecordNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-of-dicts store (collection -> id -> body)"""

    def __init__(self):
        super().__init__()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        logger.info("InMemoryDocumentStore initialized - data is NOT persisted")

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _require(self, collection: str, doc_id: str) -> Dict[str, Any]:
        data = self._collection(collection).get(doc_id)
        if data is None:
            raise RecordNotFoundError(
                f"{collection}/{doc_id} does not exist",
                record_type=collection,
                record_id=doc_id,
            )
        return data

    async def _do_create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        docs = self._collection(collection)
        if doc_id in docs:
            raise ConflictError(
                f"{collection}/{doc_id} already exists",
                record_type=collection,
                record_id=doc_id,
            )
        docs[doc_id] = data
        return Document(id=doc_id, data=copy.deepcopy(data))

    async def _do_get(self, collection: str, doc_id: str) -> Optional[Document]:
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return Document(id=doc_id, data=copy.deepcopy(data))

    async def _do_update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]],
    ) -> Document:
        data = self._require(collection, doc_id)
        if expected:
            for key, value in expected.items():
                if data.get(key) != value:
                    raise ConflictError(
                        f"{collection}/{doc_id}: expected {key}={value!r}, found {data.get(key)!r}",
                        record_type=collection,
                        record_id=doc_id,
                    )
        data.update(fields)
        return Document(id=doc_id, data=copy.deepcopy(data))

    async def _do_increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int,
        minimum: Optional[float],
    ) -> Document:
        data = self._require(collection, doc_id)
        current = data.get(field_name) or 0
        if not isinstance(current, (int, float)):
            raise ValidationError(
                f"{collection}/{doc_id}.{field_name} is not numeric",
                field=field_name,
                value=current,
            )
        if minimum is not None and current + amount < minimum:
            raise ConflictError(
                f"{collection}/{doc_id}: {field_name}={current} cannot change by {amount} "
                f"without going below {minimum}",
                record_type=collection,
                record_id=doc_id,
            )
        data[field_name] = current + amount
        return Document(id=doc_id, data=copy.deepcopy(data))

    async def _do_delete(self, collection: str, doc_id: str) -> bool:
        return self._collection(collection).pop(doc_id, None) is not None

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Document]:
        rows = [
            (doc_id, data)
            for doc_id, data in sorted(self._collection(collection).items())
            if all(f.matches(data) for f in filters)
        ]

        if order_by:
            # Missing or null values sort last ascending / first descending
            rows.sort(
                key=lambda row: (row[1].get(order_by) is None, row[1].get(order_by)),
                reverse=descending,
            )

        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]

        return [Document(id=doc_id, data=copy.deepcopy(data)) for doc_id, data in rows]

"""
Document store interface

Collections of JSON documents keyed by id, with point reads/writes, atomic
numeric increment, compare-and-set updates, simple filtered queries and live
subscriptions. Backends implement the _do_* primitives; subscription fan-out
lives here so every backend delivers snapshots the same way.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from habitquest.events import Subscription, invoke_callback

logger = logging.getLogger(__name__)

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")


@dataclass
class Document:
    """A stored document: its id plus a JSON-compatible body"""
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class Filter:
    """Single-field condition for query()"""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: Dict[str, Any]) -> bool:
        """Evaluate against a document body (missing fields never match)"""
        if self.field not in data:
            return False
        actual = data[self.field]
        if self.op == "in":
            return actual in self.value
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if actual is None or self.value is None:
            return False
        try:
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            return actual >= self.value
        except TypeError:
            return False


@dataclass
class _Watch:
    """Registered live subscription"""
    subscription: Subscription
    collection: str
    callback: Callable
    doc_id: Optional[str] = None
    filters: Sequence[Filter] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


class DocumentStore(ABC):
    """Abstract document store with live subscriptions"""

    def __init__(self):
        self._watches: Dict[str, _Watch] = {}

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _do_create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        """Insert; raise ConflictError when the id exists"""

    @abstractmethod
    async def _do_get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Point read"""

    @abstractmethod
    async def _do_update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]],
    ) -> Document:
        """Merge fields; RecordNotFoundError / ConflictError on failure"""

    @abstractmethod
    async def _do_increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int,
        minimum: Optional[float],
    ) -> Document:
        """Atomic additive update of a numeric field (missing counts as 0)"""

    @abstractmethod
    async def _do_delete(self, collection: str, doc_id: str) -> bool:
        """Delete; returns whether a document was removed"""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Document]:
        """Filtered, ordered, paginated read"""

    async def close(self) -> None:
        """Release backend resources"""
        for watch in list(self._watches.values()):
            watch.subscription.cancel()

    # ------------------------------------------------------------------
    # Public write API (notifies subscribers)
    # ------------------------------------------------------------------

    async def create(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> Document:
        doc = await self._do_create(collection, doc_id or uuid4().hex, copy.deepcopy(data))
        await self._notify(collection, doc.id)
        return doc

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return await self._do_get(collection, doc_id)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Document:
        """
        Merge top-level fields into a document

        Args:
            expected: field -> value pairs that must currently hold
                (compare-and-set); ConflictError otherwise
        """
        doc = await self._do_update(collection, doc_id, copy.deepcopy(fields), expected)
        await self._notify(collection, doc_id)
        return doc

    async def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int,
        minimum: Optional[float] = None,
    ) -> Document:
        """
        Add amount to a numeric field in one atomic step

        Args:
            minimum: The result must not fall below this; ConflictError and
                no change otherwise
        """
        doc = await self._do_increment(collection, doc_id, field_name, amount, minimum)
        await self._notify(collection, doc_id)
        return doc

    async def delete(self, collection: str, doc_id: str) -> bool:
        deleted = await self._do_delete(collection, doc_id)
        if deleted:
            await self._notify(collection, doc_id)
        return deleted

    # ------------------------------------------------------------------
    # Live subscriptions
    # ------------------------------------------------------------------

    async def subscribe_document(self, collection: str, doc_id: str, callback: Callable) -> Subscription:
        """
        Watch a single document

        The callback receives the current Document (or None once deleted)
        immediately and after every write to it.
        """
        watch = self._register(_Watch(
            subscription=Subscription(on_cancel=self._unregister),
            collection=collection,
            callback=callback,
            doc_id=doc_id,
        ))
        await self._deliver(watch)
        return watch.subscription

    async def subscribe_query(
        self,
        collection: str,
        callback: Callable,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> Subscription:
        """
        Watch a query

        The callback receives the full result list immediately and after
        every write to the collection.
        """
        watch = self._register(_Watch(
            subscription=Subscription(on_cancel=self._unregister),
            collection=collection,
            callback=callback,
            filters=tuple(filters),
            order_by=order_by,
            descending=descending,
            limit=limit,
        ))
        await self._deliver(watch)
        return watch.subscription

    def _register(self, watch: _Watch) -> _Watch:
        self._watches[watch.subscription.id] = watch
        logger.debug(f"Registered watch {watch.subscription.id} on {watch.collection}")
        return watch

    def _unregister(self, subscription: Subscription) -> None:
        self._watches.pop(subscription.id, None)

    async def _deliver(self, watch: _Watch) -> None:
        if not watch.subscription.active:
            return
        if watch.doc_id is not None:
            snapshot = await self._do_get(watch.collection, watch.doc_id)
        else:
            snapshot = await self.query(
                watch.collection,
                filters=watch.filters,
                order_by=watch.order_by,
                descending=watch.descending,
                limit=watch.limit,
            )
        # Cancelled while the snapshot was being read
        if not watch.subscription.active:
            return
        await invoke_callback(watch.callback, snapshot)

    async def _notify(self, collection: str, doc_id: str) -> None:
        for watch in list(self._watches.values()):
            if watch.collection != collection:
                continue
            if watch.doc_id is not None and watch.doc_id != doc_id:
                continue
            try:
                await self._deliver(watch)
            except Exception as e:
                logger.error(f"Failed to refresh watch {watch.subscription.id}: {e}", exc_info=True)

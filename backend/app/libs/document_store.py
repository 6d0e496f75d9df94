"""Document Store - schemaless collections with live subscriptions.

Documents live at slash-separated paths (``orders/abc``,
``ai_templates/p1/project_collections/c1``). A collection path is the
document path minus its last segment.

Two implementations share one contract:

- ``PostgresDocumentStore`` keeps documents as JSONB rows and fans changes
  out through LISTEN/NOTIFY.
- ``InMemoryDocumentStore`` keeps everything in a dict and notifies
  synchronously; it backs local runs and the test-suite.

Usage:
    store = get_document_store()
    order_id = await store.add("orders", {"status": "Pending", "createdAt": SERVER_TIMESTAMP})
    unsubscribe = await store.subscribe_query("orders", render, order_by="createdAt", descending=True)
    await store.update(f"orders/{order_id}", {"status": "Completed"})
"""

import asyncio
import copy
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from app.libs.database import CHANGES_CHANNEL, get_db_connection
from app.libs.settings import get_settings

logger = logging.getLogger("stylo.document_store")

REVISION_FIELD = "_rev"

Where = Tuple[str, str, Any]
DocumentCallback = Callable[["DocumentSnapshot"], None]
QueryCallback = Callable[[List["DocumentSnapshot"]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class DocumentStoreError(Exception):
    """Base exception for document store failures"""
    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(self.message)


class DocumentNotFoundError(DocumentStoreError):
    """Raised when updating a document that does not exist"""


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


SERVER_TIMESTAMP = _ServerTimestamp()
DELETE_FIELD = _DeleteField()


@dataclass
class ArrayUnion:
    """Field transform: append values not already present"""
    values: Sequence[Any]


@dataclass
class ArrayRemove:
    """Field transform: drop every occurrence of the values"""
    values: Sequence[Any]


@dataclass
class DocumentSnapshot:
    """Point-in-time view of one document"""
    path: str
    data: Optional[Dict[str, Any]] = None
    revision: int = 0

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        """Document data merged with its id, the shape most callers want."""
        return {"id": self.id, **(self.data or {})}


# =============================================================================
# SHARED HELPERS
# =============================================================================


def split_path(path: str) -> Tuple[str, str]:
    """Return (collection_path, doc_id) for a document path."""
    path = path.strip("/")
    if "/" not in path:
        raise ValueError(f"Not a document path: {path!r}")
    collection, doc_id = path.rsplit("/", 1)
    return collection, doc_id


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def _resolve(value: Any, now: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: _resolve(v, now) for k, v in value.items() if v is not DELETE_FIELD}
    if isinstance(value, list):
        return [_resolve(v, now) for v in value]
    return value


def apply_field_updates(data: Dict[str, Any], fields: Dict[str, Any], now: str) -> Dict[str, Any]:
    """Apply an update payload to a copy of ``data``.

    Keys may be dotted paths into nested maps. Values may be
    ``SERVER_TIMESTAMP``, ``DELETE_FIELD``, ``ArrayUnion`` or ``ArrayRemove``.
    """
    result = copy.deepcopy(data)
    for key, value in fields.items():
        parts = key.split(".")
        target = result
        for part in parts[:-1]:
            nested = target.get(part)
            if not isinstance(nested, dict):
                nested = {}
                target[part] = nested
            target = nested
        leaf = parts[-1]

        if value is DELETE_FIELD:
            target.pop(leaf, None)
        elif isinstance(value, ArrayUnion):
            current = list(target.get(leaf) or [])
            for item in value.values:
                if item not in current:
                    current.append(_resolve(item, now))
            target[leaf] = current
        elif isinstance(value, ArrayRemove):
            current = list(target.get(leaf) or [])
            target[leaf] = [item for item in current if item not in value.values]
        else:
            target[leaf] = _resolve(value, now)
    return result


def _field_value(data: Dict[str, Any], field_path: str) -> Any:
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def matches(data: Dict[str, Any], where: Sequence[Where]) -> bool:
    for field_path, op, expected in where:
        actual = _field_value(data, field_path)
        if op == "==":
            if actual != expected:
                return False
        elif op == "array-contains":
            if not isinstance(actual, list) or expected not in actual:
                return False
        else:
            raise ValueError(f"Unsupported query operator: {op}")
    return True


def run_query(
    snapshots: List[DocumentSnapshot],
    where: Sequence[Where] = (),
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[DocumentSnapshot]:
    """Filter, order and limit snapshots client-side."""
    results = [s for s in snapshots if s.data is not None and matches(s.data, where)]
    if order_by:
        # Documents missing the order field are excluded, as hosted stores do
        results = [s for s in results if _field_value(s.data, order_by) is not None]
        results.sort(key=lambda s: _field_value(s.data, order_by), reverse=descending)
    if limit is not None:
        results = results[:limit]
    return results


@dataclass
class _QuerySubscription:
    collection: str
    callback: QueryCallback
    where: Sequence[Where] = ()
    order_by: Optional[str] = None
    descending: bool = False
    on_error: Optional[ErrorCallback] = None


@dataclass
class _DocumentSubscription:
    path: str
    callback: DocumentCallback
    on_error: Optional[ErrorCallback] = None


@dataclass
class _Listeners:
    documents: Dict[int, _DocumentSubscription] = field(default_factory=dict)
    queries: Dict[int, _QuerySubscription] = field(default_factory=dict)
    next_id: int = 0

    def add(self, subscription) -> int:
        self.next_id += 1
        if isinstance(subscription, _DocumentSubscription):
            self.documents[self.next_id] = subscription
        else:
            self.queries[self.next_id] = subscription
        return self.next_id

    def remove(self, token: int) -> None:
        self.documents.pop(token, None)
        self.queries.pop(token, None)


class DocumentStore:
    """Interface shared by the store implementations."""

    async def get(self, path: str) -> DocumentSnapshot:
        raise NotImplementedError

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        raise NotImplementedError

    async def subscribe_document(
        self, path: str, callback: DocumentCallback, on_error: Optional[ErrorCallback] = None
    ) -> Unsubscribe:
        raise NotImplementedError

    async def subscribe_query(
        self,
        collection: str,
        callback: QueryCallback,
        where: Sequence[Where] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held for live subscriptions."""


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================


class InMemoryDocumentStore(DocumentStore):
    """Process-local store. Listeners are notified synchronously after each write."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._revisions: Dict[str, int] = {}
        self._listeners = _Listeners()
        self._last_timestamp: Optional[datetime] = None

    def _now(self) -> str:
        # Strictly increasing so ordering by server timestamps is deterministic
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now.isoformat()

    def _snapshot(self, path: str) -> DocumentSnapshot:
        data = self._documents.get(path)
        return DocumentSnapshot(
            path=path,
            data=copy.deepcopy(data) if data is not None else None,
            revision=self._revisions.get(path, 0),
        )

    def _collection_snapshots(self, collection: str) -> List[DocumentSnapshot]:
        prefix = collection.strip("/") + "/"
        return [
            self._snapshot(path)
            for path in self._documents
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    def _write(self, path: str, data: Optional[Dict[str, Any]]) -> None:
        if data is None:
            self._documents.pop(path, None)
        else:
            self._documents[path] = data
        revision = self._revisions.get(path, 0) + 1
        self._revisions[path] = revision
        if data is not None:
            data[REVISION_FIELD] = revision
        self._notify(path)

    def _notify(self, path: str) -> None:
        collection, _ = split_path(path)
        for sub in list(self._listeners.documents.values()):
            if sub.path == path:
                self._deliver(sub.callback, self._snapshot(path), sub.on_error)
        for sub in list(self._listeners.queries.values()):
            if sub.collection == collection:
                snapshots = run_query(
                    self._collection_snapshots(collection), sub.where, sub.order_by, sub.descending
                )
                self._deliver(sub.callback, snapshots, sub.on_error)

    @staticmethod
    def _deliver(callback, payload, on_error: Optional[ErrorCallback]) -> None:
        try:
            callback(payload)
        except Exception as e:
            if on_error is None:
                raise
            on_error(e)

    async def get(self, path: str) -> DocumentSnapshot:
        return self._snapshot(path.strip("/"))

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_document_id()
        self._write(f"{collection.strip('/')}/{doc_id}", _resolve(data, self._now()))
        return doc_id

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        path = path.strip("/")
        now = self._now()
        if merge and path in self._documents:
            merged = apply_field_updates(self._documents[path], data, now)
        else:
            merged = _resolve(data, now)
        self._write(path, merged)

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        path = path.strip("/")
        if path not in self._documents:
            raise DocumentNotFoundError(f"No document to update: {path}", path=path)
        self._write(path, apply_field_updates(self._documents[path], fields, self._now()))

    async def delete(self, path: str) -> None:
        path = path.strip("/")
        if path in self._documents:
            self._write(path, None)

    async def query(self, collection, where=(), order_by=None, descending=False, limit=None):
        return run_query(self._collection_snapshots(collection), where, order_by, descending, limit)

    async def subscribe_document(self, path, callback, on_error=None):
        path = path.strip("/")
        token = self._listeners.add(_DocumentSubscription(path, callback, on_error))
        self._deliver(callback, self._snapshot(path), on_error)
        return lambda: self._listeners.remove(token)

    async def subscribe_query(self, collection, callback, where=(), order_by=None, descending=False, on_error=None):
        collection = collection.strip("/")
        sub = _QuerySubscription(collection, callback, where, order_by, descending, on_error)
        token = self._listeners.add(sub)
        self._deliver(callback, run_query(self._collection_snapshots(collection), where, order_by, descending), on_error)
        return lambda: self._listeners.remove(token)


# =============================================================================
# POSTGRES IMPLEMENTATION
# =============================================================================


class PostgresDocumentStore(DocumentStore):
    """JSONB-backed store. Every write issues NOTIFY with the changed path."""

    def __init__(self):
        self._listeners = _Listeners()
        self._listen_conn = None
        self._dispatches: Set[asyncio.Task] = set()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_snapshot(path: str, row) -> DocumentSnapshot:
        if row is None:
            return DocumentSnapshot(path=path)
        data = json.loads(row["data"])
        data[REVISION_FIELD] = row["revision"]
        return DocumentSnapshot(path=path, data=data, revision=row["revision"])

    async def _upsert(self, conn, path: str, data: Dict[str, Any]) -> None:
        collection, doc_id = split_path(path)
        await conn.execute(
            """
            INSERT INTO documents (path, collection, doc_id, data)
            VALUES ($1, $2, $3, $4::jsonb)
            ON CONFLICT (path)
            DO UPDATE SET data = $4::jsonb, revision = documents.revision + 1, updated_at = NOW()
            """,
            path,
            collection,
            doc_id,
            json.dumps(data),
        )
        await conn.execute("SELECT pg_notify($1, $2)", CHANGES_CHANNEL, path)

    async def get(self, path: str) -> DocumentSnapshot:
        path = path.strip("/")
        conn = await get_db_connection()
        try:
            row = await conn.fetchrow("SELECT data, revision FROM documents WHERE path = $1", path)
            return self._row_to_snapshot(path, row)
        finally:
            await conn.close()

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_document_id()
        conn = await get_db_connection()
        try:
            await self._upsert(conn, f"{collection.strip('/')}/{doc_id}", _resolve(data, self._now()))
            return doc_id
        finally:
            await conn.close()

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        path = path.strip("/")
        conn = await get_db_connection()
        try:
            async with conn.transaction():
                current = None
                if merge:
                    row = await conn.fetchrow("SELECT data FROM documents WHERE path = $1 FOR UPDATE", path)
                    current = json.loads(row["data"]) if row else None
                now = self._now()
                payload = apply_field_updates(current, data, now) if current is not None else _resolve(data, now)
                await self._upsert(conn, path, payload)
        finally:
            await conn.close()

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        path = path.strip("/")
        conn = await get_db_connection()
        try:
            async with conn.transaction():
                row = await conn.fetchrow("SELECT data FROM documents WHERE path = $1 FOR UPDATE", path)
                if row is None:
                    raise DocumentNotFoundError(f"No document to update: {path}", path=path)
                updated = apply_field_updates(json.loads(row["data"]), fields, self._now())
                await self._upsert(conn, path, updated)
        finally:
            await conn.close()

    async def delete(self, path: str) -> None:
        path = path.strip("/")
        conn = await get_db_connection()
        try:
            await conn.execute("DELETE FROM documents WHERE path = $1", path)
            await conn.execute("SELECT pg_notify($1, $2)", CHANGES_CHANNEL, path)
        finally:
            await conn.close()

    async def _collection_snapshots(self, collection: str) -> List[DocumentSnapshot]:
        conn = await get_db_connection()
        try:
            rows = await conn.fetch(
                "SELECT path, data, revision FROM documents WHERE collection = $1",
                collection.strip("/"),
            )
            return [self._row_to_snapshot(row["path"], row) for row in rows]
        finally:
            await conn.close()

    async def query(self, collection, where=(), order_by=None, descending=False, limit=None):
        snapshots = await self._collection_snapshots(collection)
        return run_query(snapshots, where, order_by, descending, limit)

    async def _ensure_listener(self) -> None:
        if self._listen_conn is not None:
            return
        self._listen_conn = await get_db_connection()
        await self._listen_conn.add_listener(CHANGES_CHANNEL, self._on_notification)
        logger.info("Listening for document changes on channel %s", CHANGES_CHANNEL)

    async def close(self) -> None:
        if self._listen_conn is not None:
            await self._listen_conn.remove_listener(CHANGES_CHANNEL, self._on_notification)
            await self._listen_conn.close()
            self._listen_conn = None
        for task in list(self._dispatches):
            task.cancel()
        if self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    def _on_notification(self, conn, pid, channel, payload) -> None:
        task = asyncio.get_running_loop().create_task(self._dispatch(payload))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, task: asyncio.Task) -> None:
        self._dispatches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Listener failed for a document change: %s", task.exception())

    async def _dispatch(self, path: str) -> None:
        collection, _ = split_path(path)
        doc_subs = [s for s in self._listeners.documents.values() if s.path == path]
        query_subs = [s for s in self._listeners.queries.values() if s.collection == collection]
        if doc_subs:
            try:
                snapshot = await self.get(path)
            except Exception as e:
                logger.warning("Could not refresh %s for listeners: %s", path, e)
                for sub in doc_subs:
                    if sub.on_error:
                        sub.on_error(e)
                return
            for sub in doc_subs:
                InMemoryDocumentStore._deliver(sub.callback, snapshot, sub.on_error)
        if query_subs:
            try:
                snapshots = await self._collection_snapshots(collection)
            except Exception as e:
                logger.warning("Could not refresh query on %s: %s", collection, e)
                for sub in query_subs:
                    if sub.on_error:
                        sub.on_error(e)
                return
            for sub in query_subs:
                results = run_query(snapshots, sub.where, sub.order_by, sub.descending)
                InMemoryDocumentStore._deliver(sub.callback, results, sub.on_error)

    async def subscribe_document(self, path, callback, on_error=None):
        path = path.strip("/")
        await self._ensure_listener()
        token = self._listeners.add(_DocumentSubscription(path, callback, on_error))
        InMemoryDocumentStore._deliver(callback, await self.get(path), on_error)
        return lambda: self._listeners.remove(token)

    async def subscribe_query(self, collection, callback, where=(), order_by=None, descending=False, on_error=None):
        collection = collection.strip("/")
        await self._ensure_listener()
        token = self._listeners.add(_QuerySubscription(collection, callback, where, order_by, descending, on_error))
        InMemoryDocumentStore._deliver(callback, await self.query(collection, where, order_by, descending), on_error)
        return lambda: self._listeners.remove(token)


_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Process-wide store: Postgres when DATABASE_URL is set, in-memory otherwise."""
    global _store
    if _store is None:
        if get_settings().database_url:
            _store = PostgresDocumentStore()
        else:
            logger.warning("DATABASE_URL not set, using in-memory document store")
            _store = InMemoryDocumentStore()
    return _store


def set_document_store(store: Optional[DocumentStore]) -> None:
    """Swap the process-wide store (used by the app factory and tests)."""
    global _store
    _store = store

"""
Document store access.

DocumentStore wraps a pymongo Database and exposes the handful of primitives
the repositories rely on: query, get, add, partial update, atomic increment,
delete, server timestamps and live queries. Repositories receive a store
instance instead of reaching for a module level handle.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import NotFound, RemoteFailure

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]
Unsubscribe = Callable[[], None]


def oid(id_str: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def with_id(doc):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return _aware(doc)


def _aware(value):
    # Mongo hands back naive UTC datetimes
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {k: _aware(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_aware(v) for v in value]
    return value


def _storable(value):
    if isinstance(value, datetime) and value.tzinfo:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if isinstance(value, dict):
        return {k: _storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_storable(v) for v in value]
    return value


class _Listener:
    def __init__(self, filters, sort, limit, callback):
        self.filters = filters
        self.sort = sort
        self.limit = limit
        self.callback = callback
        self.active = True


class DocumentStore:
    def __init__(self, db: Database):
        self.db = db
        self._clock_lock = threading.Lock()
        self._last_ts: Optional[datetime] = None
        self._listeners_lock = threading.RLock()
        self._listeners: Dict[str, List[_Listener]] = {}

    @property
    def name(self) -> str:
        return self.db.name

    def list_collection_names(self) -> List[str]:
        try:
            return self.db.list_collection_names()
        except PyMongoError as e:
            raise RemoteFailure(f"Could not list collections: {e}") from e

    # ---------- Clock ----------

    def server_timestamp(self) -> datetime:
        """Strictly increasing UTC instant at the store's millisecond precision."""
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            rest = now.microsecond % 1000
            if rest:
                now += timedelta(microseconds=1000 - rest)
            if self._last_ts is not None and now <= self._last_ts:
                now = self._last_ts + timedelta(milliseconds=1)
            self._last_ts = now
            return now

    # ---------- Reads ----------

    def find(self, collection: str, filters: Optional[dict] = None, sort: Optional[Sort] = None,
             limit: Optional[int] = None) -> List[dict]:
        try:
            cursor = self.db[collection].find(_storable(filters or {}))
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return [with_id(d) for d in cursor]
        except PyMongoError as e:
            raise RemoteFailure(f"Query on {collection} failed: {e}") from e

    def find_one(self, collection: str, filters: dict) -> Optional[dict]:
        try:
            return with_id(self.db[collection].find_one(_storable(filters)))
        except PyMongoError as e:
            raise RemoteFailure(f"Query on {collection} failed: {e}") from e

    def get(self, collection: str, id: str) -> Optional[dict]:
        _id = oid(id)
        if _id is None:
            return None
        return self.find_one(collection, {"_id": _id})

    # ---------- Writes ----------

    def add(self, collection: str, data: dict) -> str:
        doc = dict(data)
        doc.pop("id", None)
        try:
            res = self.db[collection].insert_one(_storable(doc))
        except PyMongoError as e:
            raise RemoteFailure(f"Insert into {collection} failed: {e}") from e
        logger.debug("Inserted %s into %s", res.inserted_id, collection)
        self._notify(collection)
        return str(res.inserted_id)

    def update(self, collection: str, id: str, patch: dict, expect: Optional[dict] = None) -> None:
        """
        Partial update. With expect, the write only applies while the stored
        document still matches those fields; otherwise NotFound is raised.
        """
        _id = oid(id)
        if _id is None:
            raise NotFound(f"{collection} {id} not found")
        patch = {k: v for k, v in patch.items() if k not in ("id", "_id")}
        query = dict(_storable(expect or {}))
        query["_id"] = _id
        try:
            res = self.db[collection].update_one(query, {"$set": _storable(patch)})
        except PyMongoError as e:
            raise RemoteFailure(f"Update of {collection} {id} failed: {e}") from e
        if res.matched_count == 0:
            raise NotFound(f"{collection} {id} not found")
        logger.debug("Updated %s in %s: %s", id, collection, sorted(patch))
        self._notify(collection)

    def increment(self, collection: str, id: str, field: str, amount, extra: Optional[dict] = None) -> dict:
        """Atomically add amount to field and return the updated document."""
        _id = oid(id)
        if _id is None:
            raise NotFound(f"{collection} {id} not found")
        update: Dict[str, Any] = {"$inc": {field: amount}}
        if extra:
            update["$set"] = _storable(extra)
        try:
            doc = self.db[collection].find_one_and_update(
                {"_id": _id}, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise RemoteFailure(f"Increment on {collection} {id} failed: {e}") from e
        if doc is None:
            raise NotFound(f"{collection} {id} not found")
        self._notify(collection)
        return with_id(doc)

    def delete(self, collection: str, id: str) -> bool:
        _id = oid(id)
        if _id is None:
            return False
        try:
            res = self.db[collection].delete_one({"_id": _id})
        except PyMongoError as e:
            raise RemoteFailure(f"Delete from {collection} failed: {e}") from e
        if res.deleted_count:
            self._notify(collection)
        return res.deleted_count > 0

    def delete_many(self, collection: str, filters: dict) -> int:
        try:
            res = self.db[collection].delete_many(_storable(filters))
        except PyMongoError as e:
            raise RemoteFailure(f"Delete from {collection} failed: {e}") from e
        if res.deleted_count:
            self._notify(collection)
        return res.deleted_count

    # ---------- Live queries ----------

    def listen(self, collection: str, filters: Optional[dict], sort: Optional[Sort],
               callback: Callable[[List[dict]], None], limit: Optional[int] = None) -> Unsubscribe:
        """
        Register a live query. The callback receives the full result now and
        again after every write to the collection made through this store.
        """
        listener = _Listener(filters, sort, limit, callback)
        with self._listeners_lock:
            self._listeners.setdefault(collection, []).append(listener)
        self._deliver(collection, listener)

        def unsubscribe():
            with self._listeners_lock:
                listener.active = False
                registered = self._listeners.get(collection, [])
                if listener in registered:
                    registered.remove(listener)

        return unsubscribe

    def listener_count(self, collection: str) -> int:
        with self._listeners_lock:
            return len(self._listeners.get(collection, []))

    def _notify(self, collection: str):
        with self._listeners_lock:
            listeners = list(self._listeners.get(collection, []))
        for listener in listeners:
            self._deliver(collection, listener)

    def _deliver(self, collection: str, listener: _Listener):
        if not listener.active:
            return
        try:
            snapshot = self.find(collection, listener.filters, listener.sort, listener.limit)
            listener.callback(snapshot)
        except Exception:
            logger.exception("Listener on %s failed", collection)


def get_database(url: str, name: str) -> Database:
    client = MongoClient(url)
    return client[name]

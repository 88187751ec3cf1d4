"""
Storage backends for shop records.

Every entity lives in exactly one collection behind the ``DocumentStore``
interface. Two concrete backends exist: MongoDB through pymongo and Supabase
tables through supabase-py. Which one is used is decided by configuration in
``connect``; services never branch on the backend.

Queries use a small Mongo-style dialect understood by both backends:

    {"make": "Toyota", "price": {"$gte": 5000, "$lte": 15000}, "id": {"$in": [...]}}

Sort specs are lists of ``(field, direction)`` with direction ``1`` or ``-1``.
Returned documents are plain dicts carrying a string ``id``.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from config import Settings
from errors import StoreError

logger = logging.getLogger(__name__)

Query = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """Interface shared by every backend."""

    name = "abstract"

    def find(
        self,
        collection: str,
        query: Optional[Query] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def count(self, collection: str, query: Optional[Query] = None) -> int:
        raise NotImplementedError

    def find_one(self, collection: str, query: Query) -> Optional[Dict[str, Any]]:
        found = self.find(collection, query, limit=1)
        return found[0] if found else None

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self.find_one(collection, {"id": doc_id})

    def insert(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def update_many(self, collection: str, ids: Iterable[str], fields: Dict[str, Any]) -> int:
        raise NotImplementedError

    def increment(self, collection: str, doc_id: str, field: str, amount: int = 1) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def ping(self) -> List[str]:
        """Return collection names, raising if the backend is unreachable."""
        raise NotImplementedError


def _stamp_new(data: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(data)
    doc.pop("id", None)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    return doc


def _stamp_update(fields: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in fields.items() if k not in ("id", "_id", "created_at")}
    changes["updated_at"] = utcnow()
    return changes


# ---------------------------------------------------------------------------
# MongoDB
# ---------------------------------------------------------------------------

INDEXES = {
    "appointment": [
        ([("date", ASCENDING), ("time", ASCENDING)], {}),
        ([("status", ASCENDING)], {}),
        ([("email", ASCENDING)], {}),
        ([("assigned_technician", ASCENDING)], {}),
        ([("service_type", ASCENDING)], {}),
    ],
    "vehicle": [
        ([("make", ASCENDING), ("model", ASCENDING), ("year", ASCENDING)], {}),
        ([("price", ASCENDING)], {}),
        ([("status", ASCENDING)], {}),
        ([("body_type", ASCENDING)], {}),
        ([("featured", ASCENDING)], {}),
        ([("created_at", DESCENDING)], {}),
        ([("slug", ASCENDING)], {"unique": True, "sparse": True}),
        ([("stock_number", ASCENDING)], {"unique": True}),
        ([("vin", ASCENDING)], {"unique": True, "sparse": True}),
    ],
    "testimonial": [
        ([("approved", ASCENDING), ("featured", ASCENDING)], {}),
        ([("rating", ASCENDING)], {}),
    ],
    "service": [
        ([("slug", ASCENDING)], {"unique": True}),
        ([("category", ASCENDING), ("active", ASCENDING)], {}),
    ],
    "user": [
        ([("email", ASCENDING)], {"unique": True}),
        ([("role", ASCENDING)], {}),
    ],
    "session": [
        ([("token", ASCENDING)], {"unique": True}),
    ],
}


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def _object_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        # an id that can never match
        return None


def to_mongo_query(query: Optional[Query]) -> Query:
    if not query:
        return {}
    mongo: Query = {}
    for key, value in query.items():
        if key == "id":
            key = "_id"
            if isinstance(value, dict):
                value = {op: [_object_id(v) for v in arg] if op == "$in" else _object_id(arg)
                         for op, arg in value.items()}
            else:
                value = _object_id(value)
        mongo[key] = value
    return mongo


def _jsonable_date(value: Any) -> Any:
    # BSON has no date type
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


class MongoStore(DocumentStore):
    name = "mongo"

    def __init__(self, db):
        self.db = db

    def _guard(self, action: str):
        return _StoreGuard(action, self.name)

    def find(self, collection, query=None, sort=None, skip=0, limit=0):
        with self._guard(f"find {collection}"):
            cursor = self.db[collection].find(to_mongo_query(query))
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return [serialize_doc(doc) for doc in cursor]

    def count(self, collection, query=None):
        with self._guard(f"count {collection}"):
            return self.db[collection].count_documents(to_mongo_query(query))

    def insert(self, collection, data):
        doc = {k: _jsonable_date(v) for k, v in _stamp_new(data).items()}
        with self._guard(f"insert {collection}"):
            inserted_id = self.db[collection].insert_one(doc).inserted_id
            return serialize_doc(self.db[collection].find_one({"_id": inserted_id}))

    def update(self, collection, doc_id, fields):
        changes = {k: _jsonable_date(v) for k, v in _stamp_update(fields).items()}
        oid = _object_id(doc_id)
        if oid is None:
            return None
        with self._guard(f"update {collection}"):
            doc = self.db[collection].find_one_and_update(
                {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
            return serialize_doc(doc)

    def update_many(self, collection, ids, fields):
        oids = [oid for oid in (_object_id(i) for i in ids) if oid is not None]
        if not oids:
            return 0
        with self._guard(f"update_many {collection}"):
            result = self.db[collection].update_many({"_id": {"$in": oids}}, {"$set": _stamp_update(fields)})
            return result.modified_count

    def increment(self, collection, doc_id, field, amount=1):
        oid = _object_id(doc_id)
        if oid is None:
            return None
        with self._guard(f"increment {collection}.{field}"):
            doc = self.db[collection].find_one_and_update(
                {"_id": oid}, {"$inc": {field: amount}}, return_document=ReturnDocument.AFTER
            )
            return serialize_doc(doc)

    def delete(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return False
        with self._guard(f"delete {collection}"):
            return self.db[collection].delete_one({"_id": oid}).deleted_count > 0

    def ping(self):
        with self._guard("ping"):
            return self.db.list_collection_names()

    def ensure_indexes(self) -> None:
        for collection, indexes in INDEXES.items():
            for keys, options in indexes:
                try:
                    self.db[collection].create_index(keys, **options)
                except PyMongoError as exc:
                    logger.warning("Could not create index %s on %s: %s", keys, collection, exc)


class _StoreGuard:
    """Wraps backend exceptions into StoreError."""

    def __init__(self, action: str, backend: str):
        self.action = action
        self.backend = backend

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or isinstance(exc, StoreError):
            return False
        logger.error("%s store failed to %s: %s", self.backend, self.action, exc)
        raise StoreError(f"Database error during {self.action}") from exc


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

def _to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    return value


def apply_filters(builder, query: Optional[Query]):
    """Apply a Mongo-style query to a supabase/postgrest filter builder."""
    for key, value in (query or {}).items():
        if isinstance(value, dict):
            for op, arg in value.items():
                if op == "$gte":
                    builder = builder.gte(key, _to_json(arg))
                elif op == "$lte":
                    builder = builder.lte(key, _to_json(arg))
                elif op == "$in":
                    builder = builder.in_(key, [_to_json(a) for a in arg])
                else:
                    raise ValueError(f"Unsupported operator {op}")
        else:
            builder = builder.eq(key, _to_json(value))
    return builder


class SupabaseStore(DocumentStore):
    name = "supabase"

    def __init__(self, client):
        self.client = client

    def _guard(self, action: str):
        return _StoreGuard(action, self.name)

    def _table(self, collection: str):
        return self.client.table(collection)

    def find(self, collection, query=None, sort=None, skip=0, limit=0):
        with self._guard(f"find {collection}"):
            builder = apply_filters(self._table(collection).select("*"), query)
            for field, direction in sort or ():
                builder = builder.order(field, desc=direction < 0)
            if limit:
                builder = builder.range(skip, skip + limit - 1)
            elif skip:
                builder = builder.range(skip, skip + 10000)
            response = builder.execute()
            return [self._normalize(row) for row in response.data or []]

    def count(self, collection, query=None):
        with self._guard(f"count {collection}"):
            builder = apply_filters(self._table(collection).select("id", count="exact"), query)
            response = builder.execute()
            return response.count or 0

    def insert(self, collection, data):
        with self._guard(f"insert {collection}"):
            response = self._table(collection).insert(_to_json(_stamp_new(data))).execute()
            return self._normalize(response.data[0])

    def update(self, collection, doc_id, fields):
        with self._guard(f"update {collection}"):
            response = self._table(collection).update(_to_json(_stamp_update(fields))).eq("id", doc_id).execute()
            return self._normalize(response.data[0]) if response.data else None

    def update_many(self, collection, ids, fields):
        ids = list(ids)
        if not ids:
            return 0
        with self._guard(f"update_many {collection}"):
            response = self._table(collection).update(_to_json(_stamp_update(fields))).in_("id", ids).execute()
            return len(response.data or [])

    def increment(self, collection, doc_id, field, amount=1):
        # read-modify-write, last write wins
        doc = self.get(collection, doc_id)
        if doc is None:
            return None
        return self.update(collection, doc_id, {field: (doc.get(field) or 0) + amount})

    def delete(self, collection, doc_id):
        with self._guard(f"delete {collection}"):
            response = self._table(collection).delete().eq("id", doc_id).execute()
            return bool(response.data)

    def ping(self):
        with self._guard("ping"):
            self._table("vehicle").select("id").limit(1).execute()
            return ["vehicle"]

    @staticmethod
    def _normalize(row: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(row)
        if "id" in row:
            row["id"] = str(row["id"])
        return row


def supabase_client(settings: Settings):
    from supabase import create_client

    return create_client(settings.supabase_url, settings.supabase_key)


def connect(settings: Settings) -> Optional[DocumentStore]:
    """Build the configured backend, or None when it is not configured."""
    if settings.store_backend == "supabase":
        if not (settings.supabase_url and settings.supabase_key):
            logger.warning("STORE_BACKEND=supabase but SUPABASE_URL/SUPABASE_KEY are not set")
            return None
        return SupabaseStore(supabase_client(settings))

    if not settings.database_url:
        logger.warning("DATABASE_URL is not set; running without a database")
        return None
    client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
    store = MongoStore(client[settings.database_name])
    try:
        client.admin.command("ping")
    except PyMongoError as exc:
        logger.warning("MongoDB not reachable at startup, index setup skipped: %s", exc)
        return store
    store.ensure_indexes()
    return store

# storage/store.py - Collection store used by the rentals services
#
# Two implementations share one interface:
#   MongoDocumentStore  motor collections, atomic counters, unique indexes
#   LocalJsonStore      one JSON file per collection under RENTALS_DATA_DIR

import asyncio
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.database import AsyncDatabaseConfig, db_manager
from utils.exceptions import StoreUnavailableError, UniqueConstraintError

logger = structlog.get_logger(__name__)

CONTRACTS = "contracts"
INVOICES = "invoices"
INVOICE_SETTINGS = "invoice_settings"
INFLATION_CACHE = "inflation_cache"
DEPOSITS = "deposits"
NOTIFICATION_LOG = "notification_log"
EXCHANGE_RATES = "exchange_rates"
MESSAGES = "messages"

LOCAL_FALLBACK_LIMITATION = (
    "Local JSON fallback: writes are best effort and not atomic across processes. "
    "Invoice numbers and the invoice uniqueness key are only guaranteed within a "
    "single running process; do not run more than one instance in this mode."
)

# Compound keys enforced on insert. The Mongo store creates them as unique indexes.
UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    CONTRACTS: [("id",)],
    INVOICES: [("id",), ("contractId", "partnerKey", "issuedAt")],
    INVOICE_SETTINGS: [("id",)],
    DEPOSITS: [("id",)],
    NOTIFICATION_LOG: [("key",)],
    INFLATION_CACHE: [("key", "month")],
    EXCHANGE_RATES: [("key", "date")],
}

SECONDARY_INDEXES: Dict[str, List[Tuple[str, ...]]] = {
    INVOICES: [("issuedAt",), ("contractId", "issuedAt")],
    CONTRACTS: [("assetId",), ("endDate",)],
    DEPOSITS: [("contractId",)],
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore(ABC):
    """Documents are plain dicts addressed by their ``id`` field."""

    mode: str = "abstract"
    concurrency_safe: bool = False

    @property
    def limitation(self) -> Optional[str]:
        return None if self.concurrency_safe else LOCAL_FALLBACK_LIMITATION

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    @abstractmethod
    async def find(self, collection: str, query: Optional[dict] = None,
                   sort: Optional[Sequence[Tuple[str, int]]] = None, limit: int = 0) -> List[dict]: ...

    async def find_one(self, collection: str, query: dict) -> Optional[dict]:
        found = await self.find(collection, query, limit=1)
        return found[0] if found else None

    @abstractmethod
    async def insert(self, collection: str, doc: dict) -> dict:
        """Insert a new document; raises UniqueConstraintError on a key clash."""

    @abstractmethod
    async def upsert(self, collection: str, doc: dict) -> dict: ...

    @abstractmethod
    async def update_fields(self, collection: str, doc_id: str, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool: ...

    @abstractmethod
    async def delete_many(self, collection: str, query: dict) -> int: ...

    @abstractmethod
    async def increment(self, collection: str, doc_id: str, field: str, seed: dict) -> dict:
        """
        Return the document as it was *before* adding 1 to ``field``.
        A missing document is created from ``seed`` first.
        """

    async def ensure_indexes(self) -> None:
        return None


# =====================================
# MongoDB
# =====================================

class MongoDocumentStore(DocumentStore):
    mode = "mongo"
    concurrency_safe = True

    def __init__(self, database: AsyncIOMotorDatabase):
        self.db = database

    async def get(self, collection, doc_id):
        return await self.db[collection].find_one({"id": doc_id}, {"_id": 0})

    async def find(self, collection, query=None, sort=None, limit=0):
        cursor = self.db[collection].find(query or {}, {"_id": 0})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit or None)

    async def insert(self, collection, doc):
        try:
            await self.db[collection].insert_one(dict(doc))
        except DuplicateKeyError as e:
            raise UniqueConstraintError(collection, e.details) from e
        return doc

    async def upsert(self, collection, doc):
        await self.db[collection].replace_one({"id": doc["id"]}, dict(doc), upsert=True)
        return doc

    async def update_fields(self, collection, doc_id, fields):
        return await self.db[collection].find_one_and_update(
            {"id": doc_id},
            {"$set": fields},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def delete(self, collection, doc_id):
        result = await self.db[collection].delete_one({"id": doc_id})
        return result.deleted_count > 0

    async def delete_many(self, collection, query):
        result = await self.db[collection].delete_many(query)
        return result.deleted_count

    async def increment(self, collection, doc_id, field, seed):
        coll = self.db[collection]
        # the upsert copies ``id`` from the filter
        seed_doc = {k: v for k, v in seed.items() if k != "id"}
        seed_doc.setdefault(field, 1)
        try:
            await coll.update_one({"id": doc_id}, {"$setOnInsert": seed_doc}, upsert=True)
        except DuplicateKeyError:
            # a concurrent caller seeded the same document first
            pass
        before = await coll.find_one_and_update(
            {"id": doc_id},
            {"$inc": {field: 1}, "$set": {"updatedAt": _now_iso()}},
            projection={"_id": 0},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            raise StoreUnavailableError(f"{collection}/{doc_id} vanished during increment")
        return before

    async def ensure_indexes(self):
        config: Dict[str, List[dict]] = {}
        for collection, keys in UNIQUE_KEYS.items():
            config.setdefault(collection, []).extend(
                {"keys": [(k, 1) for k in key], "unique": True} for key in keys
            )
        for collection, keys in SECONDARY_INDEXES.items():
            config.setdefault(collection, []).extend({"keys": [(k, 1) for k in key]} for key in keys)
        await db_manager.create_indexes(config)


# =====================================
# Local JSON files
# =====================================

_OPERATORS = {
    "$gte": lambda a, b: a is not None and a >= b,
    "$gt": lambda a, b: a is not None and a > b,
    "$lte": lambda a, b: a is not None and a <= b,
    "$lt": lambda a, b: a is not None and a < b,
    "$ne": lambda a, b: a != b,
    "$in": lambda a, b: a in b,
}


def matches(doc: dict, query: Optional[dict]) -> bool:
    """Subset of the Mongo query language: equality and comparison operators."""
    for field, condition in (query or {}).items():
        value = doc.get(field)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Unsupported operator {op}")
                if not _OPERATORS[op](value, operand):
                    return False
        elif value != condition:
            return False
    return True


class LocalJsonStore(DocumentStore):
    """
    Best-effort store for running without MongoDB.

    An asyncio lock serialises operations inside one process, which keeps
    the counter and unique keys correct there. Nothing coordinates several
    processes writing the same files; see LOCAL_FALLBACK_LIMITATION.
    """

    mode = "local"
    concurrency_safe = False

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self._lock = asyncio.Lock()

    def _path(self, collection: str) -> str:
        return os.path.join(self.data_dir, f"{collection}.json")

    def _read(self, collection: str) -> List[dict]:
        try:
            with open(self._path(collection), "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return []
        if not isinstance(data, list):
            raise StoreUnavailableError(f"{self._path(collection)} does not hold a JSON list")
        return data

    def _write(self, collection: str, docs: List[dict]) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        path = self._path(collection)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(docs, fh, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp, path)

    def _check_unique(self, collection: str, docs: Iterable[dict], doc: dict, skip_id: Optional[str] = None):
        for key in UNIQUE_KEYS.get(collection, []):
            wanted = tuple(doc.get(k) for k in key)
            if any(v is None for v in wanted):
                continue
            for other in docs:
                if skip_id is not None and other.get("id") == skip_id:
                    continue
                if tuple(other.get(k) for k in key) == wanted:
                    raise UniqueConstraintError(collection, {"keyValue": dict(zip(key, wanted))})

    async def get(self, collection, doc_id):
        async with self._lock:
            return next((d for d in self._read(collection) if d.get("id") == doc_id), None)

    async def find(self, collection, query=None, sort=None, limit=0):
        async with self._lock:
            docs = [d for d in self._read(collection) if matches(d, query)]
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=direction < 0)
        return docs[:limit] if limit else docs

    async def insert(self, collection, doc):
        async with self._lock:
            docs = self._read(collection)
            self._check_unique(collection, docs, doc)
            docs.append(dict(doc))
            self._write(collection, docs)
        return doc

    async def upsert(self, collection, doc):
        async with self._lock:
            docs = self._read(collection)
            self._check_unique(collection, docs, doc, skip_id=doc["id"])
            docs = [d for d in docs if d.get("id") != doc["id"]] + [dict(doc)]
            self._write(collection, docs)
        return doc

    async def update_fields(self, collection, doc_id, fields):
        async with self._lock:
            docs = self._read(collection)
            for doc in docs:
                if doc.get("id") == doc_id:
                    doc.update(fields)
                    self._write(collection, docs)
                    return dict(doc)
        return None

    async def delete(self, collection, doc_id):
        async with self._lock:
            docs = self._read(collection)
            kept = [d for d in docs if d.get("id") != doc_id]
            if len(kept) == len(docs):
                return False
            self._write(collection, kept)
            return True

    async def delete_many(self, collection, query):
        async with self._lock:
            docs = self._read(collection)
            kept = [d for d in docs if not matches(d, query)]
            self._write(collection, kept)
            return len(docs) - len(kept)

    async def increment(self, collection, doc_id, field, seed):
        async with self._lock:
            docs = self._read(collection)
            current = next((d for d in docs if d.get("id") == doc_id), None)
            if current is None:
                current = {**seed, "id": doc_id}
                current.setdefault(field, 1)
                docs.append(current)
            before = dict(current)
            current[field] = int(current.get(field) or 1) + 1
            current["updatedAt"] = _now_iso()
            self._write(collection, docs)
            return before


# =====================================
# Selection
# =====================================

async def select_store(data_dir: str, config: Optional[AsyncDatabaseConfig] = None) -> DocumentStore:
    """MongoDB when configured and reachable, otherwise the local JSON store."""
    config = config or AsyncDatabaseConfig.from_env()
    if config.is_configured:
        try:
            database = await db_manager.initialize(config)
            store = MongoDocumentStore(database)
            await store.ensure_indexes()
            return store
        except (PyMongoError, ValueError) as e:
            logger.error("mongo_unavailable_using_local_store", error=str(e))
    logger.warning("local_store_active", data_dir=data_dir, limitation=LOCAL_FALLBACK_LIMITATION)
    return LocalJsonStore(data_dir)

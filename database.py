"""
In-memory document store.

Records are plain dicts keyed by a numeric ``id``. Pydantic schemas are
validated and dumped on insert. Reads hand out copies so callers always work
on a consistent snapshot and never mutate stored state by accident.
"""

import itertools
import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, Hashable, List, Optional, Union

from pydantic import BaseModel

from errors import StorageError
from schemas import User as UserSchema, ParkingSpot as SpotSchema
from security import get_password_hash

logger = logging.getLogger(__name__)

COLLECTIONS = ("user", "spot", "booking")


class MemoryStore:
    def __init__(self):
        self._collections: Dict[str, Dict[int, dict]] = {name: {} for name in COLLECTIONS}
        self._counters = {name: itertools.count(1) for name in COLLECTIONS}
        self._lock = threading.RLock()
        self._key_locks: Dict[Hashable, threading.Lock] = {}

    def _collection(self, name: str) -> Dict[int, dict]:
        try:
            return self._collections[name]
        except KeyError:
            raise StorageError(f"Unknown collection: {name}") from None

    def create(self, collection: str, data: Union[BaseModel, dict]) -> dict:
        docs = self._collection(collection)
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        now = datetime.utcnow()
        if doc.get("created_at") is None:
            doc["created_at"] = now
        doc["updated_at"] = now
        with self._lock:
            doc["id"] = next(self._counters[collection])
            docs[doc["id"]] = doc
        return dict(doc)

    def get(self, collection: str, doc_id: int) -> Optional[dict]:
        doc = self._collection(collection).get(doc_id)
        return dict(doc) if doc is not None else None

    def find(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[dict]:
        filters = filters or {}
        with self._lock:
            docs = list(self._collection(collection).values())
        return [
            dict(doc)
            for doc in sorted(docs, key=lambda d: d["id"])
            if all(doc.get(k) == v for k, v in filters.items())
        ]

    def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int:
        return len(self.find(collection, filters))

    def update(self, collection: str, doc_id: int, changes: Dict[str, Any]) -> Optional[dict]:
        docs = self._collection(collection)
        with self._lock:
            doc = docs.get(doc_id)
            if doc is None:
                return None
            # id and created_at are immutable
            changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
            updated = {**doc, **changes, "updated_at": datetime.utcnow()}
            docs[doc_id] = updated
        return dict(updated)

    def delete(self, collection: str, doc_id: int) -> bool:
        docs = self._collection(collection)
        with self._lock:
            return docs.pop(doc_id, None) is not None

    def lock_for(self, key: Hashable) -> threading.Lock:
        """Mutex shared by every caller using the same key.

        Locks are never dropped, so keys must come from a bounded set: one per
        spot, plus the fixed "email" and "spot_number" keys.
        """
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def spot_lock(self, spot_id: int) -> threading.Lock:
        """Serialises booking writes and deletion for one spot."""
        return self.lock_for(("spot", spot_id))


def seed_store(store: MemoryStore) -> MemoryStore:
    """Admin account plus two levels of demo spots, a few switched off."""
    store.create("user", UserSchema(
        name="Admin User",
        email=os.getenv("ADMIN_EMAIL", "admin@parksmart.com"),
        password_hash=get_password_hash(os.getenv("ADMIN_PASSWORD", "admin123")),
        is_admin=True,
        is_active=True,
    ))

    for i in range(1, 7):
        store.create("spot", SpotSchema(spot_number=f"A{i}", level=1, type="STANDARD", price_per_hour=3.0))
    for i in range(1, 7):
        store.create("spot", SpotSchema(
            spot_number=f"B{i}",
            level=2,
            type="HANDICAPPED" if i == 3 else "STANDARD",
            price_per_hour=2.5 if i == 3 else 3.0,
        ))

    for spot in store.find("spot"):
        if spot["spot_number"] in ("A3", "B2", "B6"):
            store.update("spot", spot["id"], {"is_available": False})

    logger.info("Seeded store with %d users and %d spots", store.count("user"), store.count("spot"))
    return store


db = MemoryStore()
if os.getenv("SEED_DEMO_DATA", "1") != "0":
    seed_store(db)


def create_document(collection_name: str, data: Union[BaseModel, dict], store: Optional[MemoryStore] = None) -> int:
    return (store or db).create(collection_name, data)["id"]


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, store: Optional[MemoryStore] = None) -> List[dict]:
    return (store or db).find(collection_name, filter_dict)

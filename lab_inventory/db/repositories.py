# lab_inventory/db/repositories.py
"""
Kontrak repository yang dipakai core, plus implementasi MongoDB (Beanie/Motor).

Setiap method menyebutkan apa yang dikembalikan: record mentah (hanya id
referensi) atau data lengkap. Tidak ada populate otomatis.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from lab_inventory.db.documents import BorrowDocument, ItemDocument, UserDocument
from lab_inventory.models.borrowing import BorrowRecord, HydratedBorrow
from lab_inventory.models.enum import BorrowStatus, ItemCondition, ItemStatus
from lab_inventory.models.item import Item
from lab_inventory.models.user import User

logger = logging.getLogger(__name__)


class DuplicateBorrowCode(Exception):
    """borrow_code sudah dipakai record lain."""


@dataclass
class BorrowFilter:
    status: Optional[BorrowStatus] = None
    user_id: Optional[str] = None
    borrow_date_from: Optional[datetime] = None
    borrow_date_to: Optional[datetime] = None


@dataclass
class StatusCount:
    status: BorrowStatus
    count: int
    items: int


# --- Kontrak ---

class ItemRepository(Protocol):
    async def find_by_ids(self, ids: Iterable[str]) -> List[Item]: ...
    async def compare_and_set_status(self, item_id: str, expected: ItemStatus, new: ItemStatus) -> bool: ...
    async def update_status_and_condition(
        self, ids: Iterable[str], status: ItemStatus, condition: Optional[ItemCondition] = None
    ) -> int: ...


class BorrowRepository(Protocol):
    async def create(self, record: BorrowRecord) -> BorrowRecord: ...
    async def find_by_id(self, borrow_id: str) -> Optional[BorrowRecord]: ...
    async def find_by_status_and_due_date_range(
        self, status: BorrowStatus, start: Optional[datetime], end: datetime
    ) -> List[BorrowRecord]: ...
    async def save(self, record: BorrowRecord, expected_status: BorrowStatus) -> bool: ...
    async def list(self, flt: BorrowFilter, skip: int = 0, limit: int = 10) -> Tuple[List[BorrowRecord], int]: ...
    async def count_by_status(self) -> List[StatusCount]: ...


class UserRepository(Protocol):
    async def find_by_id(self, user_id: str) -> Optional[User]: ...


async def load_hydrated(record: BorrowRecord, users: UserRepository, items: ItemRepository) -> HydratedBorrow:
    """Resolve the borrower and every line item of a record (two lookups, no joins)."""
    user = await users.find_by_id(record.user_id)
    if user is None:
        logger.warning(f"Borrow {record.borrow_code}: user {record.user_id} not found.")
        user = User(id=record.user_id, name="Unknown user")
    found = await items.find_by_ids(record.item_ids)
    return HydratedBorrow(record=record, user=user, items={item.id: item for item in found})


# --- Helper konversi ---

def _object_ids(ids: Iterable[str]) -> List[ObjectId]:
    return [ObjectId(i) for i in ids if ObjectId.is_valid(i)]

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo menyimpan UTC; tanggal naive dari driver dianggap UTC
    if value is None: return None
    if value.tzinfo is None: return value.replace(tzinfo=timezone.utc)
    return value

def _item_from_doc(doc: ItemDocument) -> Item:
    data = doc.model_dump(exclude={"id", "revision_id", "created_at"})
    return Item(id=str(doc.id), **data)

def _borrow_from_doc(doc: BorrowDocument) -> BorrowRecord:
    data = doc.model_dump(exclude={"id", "revision_id"})
    for field in ("borrow_date", "due_date", "return_date", "created_at", "updated_at"):
        data[field] = _as_utc(data.get(field))
    return BorrowRecord(id=str(doc.id), **data)

def _user_from_doc(doc: UserDocument) -> User:
    return User(id=str(doc.id), **doc.model_dump(exclude={"id", "revision_id"}))


# --- Implementasi MongoDB ---

class MongoItemRepository:
    async def find_by_ids(self, ids: Iterable[str]) -> List[Item]:
        oids = _object_ids(ids)
        if not oids: return []
        docs = await ItemDocument.find({"_id": {"$in": oids}}).to_list()
        return [_item_from_doc(d) for d in docs]

    async def compare_and_set_status(self, item_id: str, expected: ItemStatus, new: ItemStatus) -> bool:
        if not ObjectId.is_valid(item_id): return False
        result = await ItemDocument.get_motor_collection().update_one(
            {"_id": ObjectId(item_id), "status": expected.value},
            {"$set": {"status": new.value, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count == 1

    async def update_status_and_condition(
        self, ids: Iterable[str], status: ItemStatus, condition: Optional[ItemCondition] = None
    ) -> int:
        update = {"status": status.value, "updated_at": datetime.now(timezone.utc)}
        if condition is not None:
            update["condition"] = condition.value
        result = await ItemDocument.get_motor_collection().update_many(
            {"_id": {"$in": _object_ids(ids)}}, {"$set": update}
        )
        return result.matched_count


class MongoBorrowRepository:
    async def create(self, record: BorrowRecord) -> BorrowRecord:
        doc = BorrowDocument(**record.model_dump(exclude={"id"}))
        try:
            await doc.insert()
        except DuplicateKeyError as e:
            raise DuplicateBorrowCode(record.borrow_code) from e
        return record.model_copy(update={"id": str(doc.id)})

    async def find_by_id(self, borrow_id: str) -> Optional[BorrowRecord]:
        if not ObjectId.is_valid(borrow_id): return None
        doc = await BorrowDocument.get(ObjectId(borrow_id))
        return _borrow_from_doc(doc) if doc else None

    async def find_by_status_and_due_date_range(
        self, status: BorrowStatus, start: Optional[datetime], end: datetime
    ) -> List[BorrowRecord]:
        due_query = {"$lt": end}
        if start is not None:
            due_query["$gte"] = start
        docs = await BorrowDocument.find(
            {"status": status.value, "due_date": due_query}
        ).sort("due_date").to_list()
        return [_borrow_from_doc(d) for d in docs]

    async def save(self, record: BorrowRecord, expected_status: BorrowStatus) -> bool:
        """Compare-and-set: hanya tersimpan jika status di DB masih expected_status."""
        if not record.id or not ObjectId.is_valid(record.id): return False
        payload = record.model_dump(mode="python", exclude={"id", "borrow_code", "created_at"})
        for key, value in list(payload.items()):
            if hasattr(value, "value"): payload[key] = value.value
        payload["items"] = [line.model_dump(mode="json") for line in record.items]
        result = await BorrowDocument.get_motor_collection().update_one(
            {"_id": ObjectId(record.id), "status": expected_status.value},
            {"$set": payload},
        )
        return result.modified_count == 1

    async def list(self, flt: BorrowFilter, skip: int = 0, limit: int = 10) -> Tuple[List[BorrowRecord], int]:
        query: Dict = {}
        if flt.status: query["status"] = flt.status.value
        if flt.user_id: query["user_id"] = flt.user_id
        if flt.borrow_date_from or flt.borrow_date_to:
            query["borrow_date"] = {}
            if flt.borrow_date_from: query["borrow_date"]["$gte"] = flt.borrow_date_from
            if flt.borrow_date_to: query["borrow_date"]["$lte"] = flt.borrow_date_to
        total = await BorrowDocument.find(query).count()
        docs = await BorrowDocument.find(
            query, skip=skip, limit=limit, sort=[("borrow_date", DESCENDING)]
        ).to_list()
        return [_borrow_from_doc(d) for d in docs], total

    async def count_by_status(self) -> List[StatusCount]:
        pipeline = [
            {"$group": {
                "_id": "$status",
                "count": {"$sum": 1},
                "items": {"$sum": {"$size": "$items"}},
            }}
        ]
        rows = await BorrowDocument.get_motor_collection().aggregate(pipeline).to_list(length=None)
        return [StatusCount(status=BorrowStatus(r["_id"]), count=r["count"], items=r["items"]) for r in rows]


class MongoUserRepository:
    async def find_by_id(self, user_id: str) -> Optional[User]:
        if not ObjectId.is_valid(user_id): return None
        doc = await UserDocument.get(ObjectId(user_id))
        return _user_from_doc(doc) if doc else None

# lab_inventory/db/memory.py
"""In-process repositories with the same contracts as the Mongo ones.

Used for local runs without MongoDB and by the test suite. Every mutation
happens under one asyncio.Lock, which gives the same per-document atomicity
the Mongo update_one filters give.
"""
import asyncio
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from lab_inventory.db.repositories import BorrowFilter, DuplicateBorrowCode, StatusCount
from lab_inventory.models.borrowing import BorrowRecord
from lab_inventory.models.enum import BorrowStatus, ItemCondition, ItemStatus
from lab_inventory.models.item import Item
from lab_inventory.models.user import User


class InMemoryItemRepository:
    def __init__(self, items: Iterable[Item] = ()):
        self._items: Dict[str, Item] = {item.id: item for item in items}
        self._lock = asyncio.Lock()

    def add(self, item: Item) -> Item:
        self._items[item.id] = item
        return item

    def get(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    async def find_by_ids(self, ids: Iterable[str]) -> List[Item]:
        return [self._items[i].model_copy() for i in ids if i in self._items]

    async def compare_and_set_status(self, item_id: str, expected: ItemStatus, new: ItemStatus) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.status != expected:
                return False
            self._items[item_id] = item.model_copy(update={"status": new})
            return True

    async def update_status_and_condition(
        self, ids: Iterable[str], status: ItemStatus, condition: Optional[ItemCondition] = None
    ) -> int:
        updated = 0
        async with self._lock:
            for item_id in ids:
                item = self._items.get(item_id)
                if item is None:
                    continue
                changes = {"status": status}
                if condition is not None:
                    changes["condition"] = condition
                self._items[item_id] = item.model_copy(update=changes)
                updated += 1
        return updated


class InMemoryBorrowRepository:
    def __init__(self):
        self._records: Dict[str, BorrowRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: BorrowRecord) -> BorrowRecord:
        async with self._lock:
            if any(r.borrow_code == record.borrow_code for r in self._records.values()):
                raise DuplicateBorrowCode(record.borrow_code)
            stored = record.model_copy(update={"id": uuid.uuid4().hex})
            self._records[stored.id] = stored
            return stored.model_copy(deep=True)

    async def find_by_id(self, borrow_id: str) -> Optional[BorrowRecord]:
        record = self._records.get(borrow_id)
        return record.model_copy(deep=True) if record else None

    async def find_by_status_and_due_date_range(
        self, status: BorrowStatus, start: Optional[datetime], end: datetime
    ) -> List[BorrowRecord]:
        matched = [
            r for r in self._records.values()
            if r.status == status
            and r.due_date < end
            and (start is None or r.due_date >= start)
        ]
        return [r.model_copy(deep=True) for r in sorted(matched, key=lambda r: r.due_date)]

    async def save(self, record: BorrowRecord, expected_status: BorrowStatus) -> bool:
        async with self._lock:
            current = self._records.get(record.id)
            if current is None or current.status != expected_status:
                return False
            # borrow_code tidak boleh berubah
            self._records[record.id] = record.model_copy(
                update={"borrow_code": current.borrow_code}, deep=True
            )
            return True

    async def list(self, flt: BorrowFilter, skip: int = 0, limit: int = 10) -> Tuple[List[BorrowRecord], int]:
        rows = [
            r for r in self._records.values()
            if (flt.status is None or r.status == flt.status)
            and (flt.user_id is None or r.user_id == flt.user_id)
            and (flt.borrow_date_from is None or r.borrow_date >= flt.borrow_date_from)
            and (flt.borrow_date_to is None or r.borrow_date <= flt.borrow_date_to)
        ]
        rows.sort(key=lambda r: r.borrow_date, reverse=True)
        return [r.model_copy(deep=True) for r in rows[skip:skip + limit]], len(rows)

    async def count_by_status(self) -> List[StatusCount]:
        counts: Dict[BorrowStatus, StatusCount] = {}
        for r in self._records.values():
            row = counts.setdefault(r.status, StatusCount(status=r.status, count=0, items=0))
            row.count += 1
            row.items += len(r.items)
        return list(counts.values())


class InMemoryUserRepository:
    def __init__(self, users: Iterable[User] = ()):
        self._users: Dict[str, User] = {user.id: user for user in users}

    def add(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def find_by_id(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

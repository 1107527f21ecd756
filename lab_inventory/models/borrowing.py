# lab_inventory/models/borrowing.py
import math
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, field_validator
from datetime import datetime

from .enum import BorrowStatus, ItemCondition
from .item import Item
from .user import User


class LineItem(BaseModel):
    """Satu baris barang di dalam peminjaman."""
    item_id: str
    condition: ItemCondition = ItemCondition.GOOD
    notes: Optional[str] = None


class LineItemResponse(BaseModel):
    item: Item.Ref
    condition: ItemCondition
    notes: Optional[str] = None
    class Config: use_enum_values=True


class BorrowRecord(BaseModel):
    """Record peminjaman. Tidak pernah dihapus (audit trail)."""
    id: Optional[str] = None
    borrow_code: str
    user_id: str
    items: List[LineItem] = Field(..., min_length=1)
    borrow_date: datetime
    due_date: datetime
    status: BorrowStatus = BorrowStatus.PENDING
    purpose: str
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    return_date: Optional[datetime] = None
    return_condition: Optional[ItemCondition] = None
    return_notes: Optional[str] = None
    return_processor: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def item_ids(self) -> List[str]:
        return [line.item_id for line in self.items]

    # --- Field turunan (tidak disimpan) ---
    def is_late(self, now: datetime) -> bool:
        return self.return_date is None and self.due_date < now

    def duration_days(self, now: datetime) -> int:
        end = self.return_date or now
        return math.ceil((end - self.borrow_date).total_seconds() / 86400)

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        """Request peminjaman dari user."""
        items: List[LineItem] = Field(..., min_length=1)
        due_date: datetime
        purpose: Optional[str] = None

        @field_validator("items")
        @classmethod
        def no_duplicate_items(cls, value: List[LineItem]) -> List[LineItem]:
            ids = [line.item_id for line in value]
            if len(ids) != len(set(ids)):
                raise ValueError("Each item may appear only once per borrow")
            return value

    class StatusUpdate(BaseModel):
        """Request perubahan status oleh admin."""
        status: BorrowStatus
        return_condition: Optional[ItemCondition] = None
        return_notes: Optional[str] = None
        rejection_reason: Optional[str] = None

    class Response(BaseModel):
        id: str
        borrow_code: str
        user: User.Ref
        items: List[LineItemResponse]
        borrow_date: datetime
        due_date: datetime
        status: BorrowStatus
        purpose: str
        approved_by: Optional[str] = None
        rejection_reason: Optional[str] = None
        return_date: Optional[datetime] = None
        return_condition: Optional[ItemCondition] = None
        return_notes: Optional[str] = None
        return_processor: Optional[str] = None
        is_late: bool
        duration: int
        created_at: datetime
        updated_at: datetime
        class Config: use_enum_values=True


class HydratedBorrow(BaseModel):
    """Borrow beserta user dan item yang sudah di-resolve (untuk email & response)."""
    record: BorrowRecord
    user: User
    items: Dict[str, Item]

    def item_name(self, item_id: str) -> str:
        item = self.items.get(item_id)
        return item.name if item else item_id

    def to_response(self, now: datetime) -> BorrowRecord.Response:
        record = self.record
        lines = []
        for line in record.items:
            item = self.items.get(line.item_id)
            ref = Item.Ref(
                id=line.item_id,
                code=item.code if item else "-",
                name=item.name if item else "Item Not Found",
                category=item.category if item else None,
            )
            lines.append(LineItemResponse(item=ref, condition=line.condition, notes=line.notes))
        return BorrowRecord.Response(
            **record.model_dump(exclude={"user_id", "items"}),
            user=User.Ref.model_validate(self.user.model_dump()),
            items=lines,
            is_late=record.is_late(now),
            duration=record.duration_days(now),
        )


class BorrowStats(BaseModel):
    class StatusCount(BaseModel):
        status: BorrowStatus
        count: int
        items: int
        class Config: use_enum_values=True

    by_status: List[StatusCount]
    overdue: int
    return_today: int


class BorrowPage(BaseModel):
    total: int
    page: int
    limit: int
    borrows: List[BorrowRecord.Response]

# lab_inventory/db/documents.py
from typing import Optional, List
from beanie import Document
from pydantic import Field, EmailStr
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime, timezone

from lab_inventory.models.enum import (
    BorrowStatus, ItemCategory, ItemCondition, ItemStatus, UserRole
)
from lab_inventory.models.borrowing import LineItem


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemDocument(Document):
    """Model Dokumen Beanie untuk Barang Inventaris."""
    code: str
    name: str = Field(..., max_length=200)
    category: ItemCategory
    condition: ItemCondition = ItemCondition.GOOD
    status: ItemStatus = ItemStatus.AVAILABLE
    location: str
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "items"
        indexes = [
            IndexModel([("code", ASCENDING)], name="item_code_unique_index", unique=True),
            IndexModel([("name", ASCENDING)], name="item_name_index"),
            IndexModel([("category", ASCENDING)], name="item_category_index"),
            IndexModel([("status", ASCENDING)], name="item_status_index"),
        ]


class UserDocument(Document):
    name: str
    email: Optional[EmailStr] = None
    class_name: Optional[str] = None
    role: UserRole = UserRole.USER

    class Settings:
        name = "users"
        indexes = [
            IndexModel([("email", ASCENDING)], name="email_unique_index", unique=True, sparse=True),
            IndexModel([("role", ASCENDING)], name="role_index"),
        ]


class BorrowDocument(Document):
    borrow_code: str
    user_id: str
    items: List[LineItem]
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
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "borrows"
        indexes = [
            IndexModel([("borrow_code", ASCENDING)], name="borrow_code_unique_index", unique=True),
            # Query utama scheduler: status + rentang due_date
            IndexModel([("status", ASCENDING), ("due_date", ASCENDING)], name="borrow_status_due_index"),
            IndexModel([("user_id", ASCENDING)], name="borrow_user_index"),
            IndexModel([("borrow_date", DESCENDING)], name="borrow_date_index"),
        ]

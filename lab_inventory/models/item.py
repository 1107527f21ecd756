# lab_inventory/models/item.py
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime

from .enum import ItemCategory, ItemCondition, ItemStatus

class Item(BaseModel):
    """Barang inventaris lab. Field status/condition hanya diubah oleh availability gate."""
    id: str
    code: str
    name: str = Field(..., max_length=200)
    category: ItemCategory
    condition: ItemCondition = ItemCondition.GOOD
    status: ItemStatus = ItemStatus.AVAILABLE
    location: str
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Ref(BaseModel):
        """Referensi singkat untuk ditampilkan di response/email."""
        id: str
        code: str
        name: str
        category: Optional[ItemCategory] = None
        class Config: from_attributes=True; use_enum_values=True

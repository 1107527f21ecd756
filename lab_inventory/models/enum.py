# lab_inventory/models/enum.py
from enum import Enum

class BorrowStatus(str, Enum):
    PENDING = "pending"       # <-- Status awal setelah request user
    APPROVED = "approved"     # <-- Disetujui admin, barang belum diambil
    REJECTED = "rejected"     # <-- Ditolak admin (terminal)
    BORROWED = "borrowed"
    RETURNED = "returned"     # <-- Terminal
    OVERDUE = "overdue"       # <-- Hanya lewat scheduler

class ItemCondition(str, Enum):
    GOOD = "Baik"
    LIGHT_DAMAGE = "Rusak Ringan"
    HEAVY_DAMAGE = "Rusak Berat"

class ItemStatus(str, Enum):
    AVAILABLE = "Tersedia"
    BORROWED = "Dipinjam"
    UNDER_REPAIR = "Dalam Perbaikan"

class ItemCategory(str, Enum):
    HARDWARE = "Hardware"
    PERIPHERAL = "Peripheral"
    DEVELOPMENT_TOOLS = "Development Tools"
    SOFTWARE_LICENSE = "Software License"
    LAB_EQUIPMENT = "Lab Equipment"

class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"

class NotificationKind(str, Enum):
    NEW_BORROW = "new_borrow"
    STATUS_CHANGED = "status_changed"
    DUE_REMINDER = "due_reminder"
    OVERDUE = "overdue"

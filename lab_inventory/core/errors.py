# lab_inventory/core/errors.py
from typing import List, Optional

from lab_inventory.models.enum import BorrowStatus


class BorrowError(Exception):
    """Base untuk semua error domain peminjaman."""


class ValidationError(BorrowError):
    """Input tidak valid (purpose kosong, due_date <= borrow_date, dll)."""


class NotFound(BorrowError):
    def __init__(self, message: str, missing_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_ids = missing_ids or []


class Conflict(BorrowError):
    """Item tidak tersedia saat reservasi."""
    def __init__(self, message: str, conflicting_items: Optional[List[str]] = None):
        super().__init__(message)
        self.conflicting_items = conflicting_items or []


class InvalidTransition(BorrowError):
    def __init__(self, current: BorrowStatus, requested: BorrowStatus):
        super().__init__(
            f"Cannot change borrow status from '{current.value}' to '{requested.value}'."
        )
        self.current = current
        self.requested = requested


class PermissionDenied(BorrowError):
    pass


class NotificationError(BorrowError):
    """Gagal kirim notifikasi. Tidak pernah diteruskan ke pemanggil operasi borrow."""

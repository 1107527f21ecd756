# lab_inventory/core/notifications.py
import asyncio
from typing import Optional, Set

from loguru import logger

from lab_inventory.core.mailer import Mailer, NotificationIntent
from lab_inventory.db.repositories import ItemRepository, UserRepository, load_hydrated
from lab_inventory.models.borrowing import BorrowRecord
from lab_inventory.models.enum import BorrowStatus, NotificationKind


class NotificationDispatcher:
    """
    Kirim notifikasi best-effort setelah perubahan state sudah di-commit.

    notify() langsung kembali; pengiriman berjalan sebagai task terpisah dengan
    batas konkurensi (semaphore) dan timeout per kirim. Error hanya dicatat di
    log, tidak pernah naik ke pemanggil operasi borrow.
    """

    def __init__(
        self,
        mailer: Mailer,
        users: UserRepository,
        items: ItemRepository,
        max_concurrency: int = 4,
        timeout: float = 10,
    ):
        self.mailer = mailer
        self.users = users
        self.items = items
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: Set[asyncio.Task] = set()
        self.sent = 0
        self.failed = 0

    def notify(
        self, kind: NotificationKind, record: BorrowRecord, previous_status: Optional[BorrowStatus] = None
    ) -> asyncio.Task:
        """Fire-and-forget. Must be called from inside a running event loop."""
        task = asyncio.get_running_loop().create_task(self.send(kind, record, previous_status))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def send(
        self, kind: NotificationKind, record: BorrowRecord, previous_status: Optional[BorrowStatus] = None
    ) -> bool:
        """Deliver one notification, one attempt. Returns False on any failure."""
        async with self._semaphore:
            try:
                hydrated = await load_hydrated(record, self.users, self.items)
                intent = NotificationIntent(kind=kind, borrow=hydrated, previous_status=previous_status)
                await asyncio.wait_for(self.mailer.send(intent), timeout=self.timeout)
            except asyncio.TimeoutError:
                self.failed += 1
                logger.error(f"Notification {kind.value} for borrow {record.borrow_code} timed out after {self.timeout}s")
                return False
            except Exception:
                self.failed += 1
                logger.opt(exception=True).error(f"Notification {kind.value} for borrow {record.borrow_code} failed")
                return False
        self.sent += 1
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight notifications (shutdown, tests)."""
        if not self._tasks:
            return
        done, not_done = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} notification(s) still pending after {timeout}s; cancelling.")
            for task in not_done:
                task.cancel()

"""Shared fixtures: in-memory repositories, a frozen WIB clock and a recording mailer."""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Set

import pytest

from lab_inventory.core.clock import WIB, FixedClock
from lab_inventory.core.container import Services, build_services
from lab_inventory.core.errors import NotificationError
from lab_inventory.core.mailer import NotificationIntent
from lab_inventory.db.memory import (
    InMemoryBorrowRepository,
    InMemoryItemRepository,
    InMemoryUserRepository,
)
from lab_inventory.models.borrowing import BorrowRecord, LineItem
from lab_inventory.models.enum import (
    BorrowStatus,
    ItemCategory,
    ItemCondition,
    ItemStatus,
    NotificationKind,
    UserRole,
)
from lab_inventory.models.item import Item
from lab_inventory.models.user import Actor, User

NOW = datetime(2024, 1, 10, 9, 0, tzinfo=WIB)


class RecordingMailer:
    """Mailer that keeps every intent; can be told to fail for given borrow codes."""

    def __init__(self):
        self.sent: List[NotificationIntent] = []
        self.fail_codes: Set[str] = set()
        self.delay: Optional[float] = None

    async def send(self, intent: NotificationIntent) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if intent.borrow.record.borrow_code in self.fail_codes:
            raise NotificationError("smtp down")
        self.sent.append(intent)

    def of_kind(self, kind: NotificationKind) -> List[NotificationIntent]:
        return [i for i in self.sent if i.kind == kind]


def make_item(item_id: str, name: str, status: ItemStatus = ItemStatus.AVAILABLE) -> Item:
    return Item(
        id=item_id,
        code=f"ITM{item_id[-4:].zfill(4)}",
        name=name,
        category=ItemCategory.HARDWARE,
        condition=ItemCondition.GOOD,
        status=status,
        location="Lab 1",
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def item_repo() -> InMemoryItemRepository:
    return InMemoryItemRepository(
        [
            make_item("item-0001", "Laptop Dell"),
            make_item("item-0002", "Arduino Uno"),
            make_item("item-0003", "Multimeter"),
            make_item("item-0004", "Raspberry Pi"),
            make_item("item-0005", "Soldering Iron", status=ItemStatus.UNDER_REPAIR),
        ]
    )


@pytest.fixture
def user_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository(
        [
            User(id="admin-1", name="Admin Lab", email="admin@example.com", role=UserRole.ADMIN),
            User(id="user-1", name="Budi", email="budi@example.com", class_name="XII RPL 1"),
            User(id="user-2", name="Sari", email="sari@example.com", class_name="XI RPL 2"),
        ]
    )


@pytest.fixture
def borrow_repo() -> InMemoryBorrowRepository:
    return InMemoryBorrowRepository()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def services(item_repo, borrow_repo, user_repo, clock, mailer) -> Services:
    return build_services(
        items=item_repo,
        borrows=borrow_repo,
        users=user_repo,
        clock=clock,
        mailer=mailer,
        scheduler_interval=timedelta(hours=24),
    )


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def student() -> Actor:
    return Actor(user_id="user-1", role=UserRole.USER)


def borrow_request(*item_ids: str, due: datetime, purpose: Optional[str] = "Praktikum IoT") -> BorrowRecord.Create:
    return BorrowRecord.Create(
        items=[LineItem(item_id=i) for i in item_ids],
        due_date=due,
        purpose=purpose,
    )


async def make_borrowed(services: Services, clock: FixedClock, actor: Actor, admin: Actor, item_id: str, due: datetime) -> BorrowRecord:
    """Create a borrow one day before `due` (or earlier) and walk it to `borrowed`."""
    original = clock.now()
    clock.set(min(original, due - timedelta(days=1)))
    try:
        record = await services.borrow_service.create_borrow(actor, borrow_request(item_id, due=due))
        await services.borrow_service.update_status(record.id, admin, BorrowRecord.StatusUpdate(status=BorrowStatus.APPROVED))
        return await services.borrow_service.update_status(
            record.id, admin, BorrowRecord.StatusUpdate(status=BorrowStatus.BORROWED)
        )
    finally:
        clock.set(original)

# lab_inventory/core/container.py
from dataclasses import dataclass
from datetime import timedelta, tzinfo
from typing import Optional

from lab_inventory.core import config
from lab_inventory.core.availability import ItemAvailabilityGate
from lab_inventory.core.borrowing import BorrowService
from lab_inventory.core.clock import Clock, make_clock
from lab_inventory.core.mailer import LogMailer, Mailer, SmtpMailer
from lab_inventory.core.notifications import NotificationDispatcher
from lab_inventory.db.repositories import (
    BorrowRepository, ItemRepository, MongoBorrowRepository, MongoItemRepository,
    MongoUserRepository, UserRepository,
)
from lab_inventory.scheduler.jobs import BorrowScheduler


@dataclass
class Services:
    clock: Clock
    items: ItemRepository
    borrows: BorrowRepository
    users: UserRepository
    gate: ItemAvailabilityGate
    dispatcher: NotificationDispatcher
    borrow_service: BorrowService
    scheduler: BorrowScheduler


def build_mailer(tz: tzinfo) -> Mailer:
    """Mail dates are rendered in the clock's timezone."""
    if not config.MAIL_HOST:
        return LogMailer(admin_email=config.ADMIN_EMAIL, lab_name=config.LAB_NAME, tz=tz)
    return SmtpMailer(
        host=config.MAIL_HOST,
        port=config.MAIL_PORT,
        username=config.MAIL_USERNAME,
        password=config.MAIL_PASSWORD,
        sender=config.MAIL_FROM,
        admin_email=config.ADMIN_EMAIL,
        lab_name=config.LAB_NAME,
        use_tls=config.MAIL_USE_TLS,
        timeout=config.NOTIFY_TIMEOUT_SECONDS,
        tz=tz,
    )


def build_services(
    items: Optional[ItemRepository] = None,
    borrows: Optional[BorrowRepository] = None,
    users: Optional[UserRepository] = None,
    clock: Optional[Clock] = None,
    mailer: Optional[Mailer] = None,
    scheduler_interval: Optional[timedelta] = None,
) -> Services:
    """Wire everything together. Defaults are the Mongo repositories and settings from config."""
    clock = clock or make_clock(config.LOCAL_UTC_OFFSET_HOURS)
    items = items or MongoItemRepository()
    borrows = borrows or MongoBorrowRepository()
    users = users or MongoUserRepository()
    dispatcher = NotificationDispatcher(
        mailer or build_mailer(clock.tz), users, items,
        max_concurrency=config.NOTIFY_MAX_CONCURRENCY,
        timeout=config.NOTIFY_TIMEOUT_SECONDS,
    )
    gate = ItemAvailabilityGate(items)
    service = BorrowService(borrows, users, items, gate, clock, dispatcher)
    scheduler = BorrowScheduler(
        borrows, service, dispatcher, clock,
        interval=scheduler_interval or timedelta(hours=config.SCHEDULER_INTERVAL_HOURS),
        shutdown_grace=config.SCHEDULER_SHUTDOWN_GRACE_SECONDS,
    )
    return Services(
        clock=clock, items=items, borrows=borrows, users=users, gate=gate,
        dispatcher=dispatcher, borrow_service=service, scheduler=scheduler,
    )

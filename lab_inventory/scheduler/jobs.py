# lab_inventory/scheduler/jobs.py
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from lab_inventory.core.borrowing import BorrowService
from lab_inventory.core.clock import Clock
from lab_inventory.core.errors import BorrowError, InvalidTransition
from lab_inventory.core.notifications import NotificationDispatcher
from lab_inventory.db.repositories import BorrowRepository
from lab_inventory.models.enum import BorrowStatus, NotificationKind

logger = logging.getLogger("scheduler_jobs")

DUE_SOON_JOB_ID = "due_soon_reminders_job"
OVERDUE_JOB_ID = "overdue_sweep_job"


@dataclass
class PassResult:
    matched: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class BorrowScheduler:
    """
    Dua job interval (reminder jatuh tempo & sweep overdue) di atas AsyncIOScheduler.

    Kedua job langsung jalan sekali saat start() lalu setiap `interval`.
    Transisi overdue selalu lewat BorrowService, tidak menulis status langsung.
    """

    def __init__(
        self,
        borrows: BorrowRepository,
        service: BorrowService,
        dispatcher: NotificationDispatcher,
        clock: Clock,
        interval: timedelta = timedelta(hours=24),
        shutdown_grace: float = 30,
    ):
        self.borrows = borrows
        self.service = service
        self.dispatcher = dispatcher
        self.clock = clock
        self.interval = interval
        self.shutdown_grace = shutdown_grace
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register both jobs and start. Must be called from a running event loop."""
        if self.running:
            logger.warning("Scheduler already running; start() ignored.")
            return
        self._scheduler = AsyncIOScheduler(timezone=self.clock.tz)
        # APScheduler bekerja dengan waktu dinding, bukan clock domain
        first_run = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.run_due_soon_pass,
            trigger=IntervalTrigger(seconds=self.interval.total_seconds(), timezone=self.clock.tz),
            id=DUE_SOON_JOB_ID,
            name="Send due-date reminders",
            next_run_time=first_run, # Jalan sekali saat startup
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60 * 60,
        )
        self._scheduler.add_job(
            self.run_overdue_pass,
            trigger=IntervalTrigger(seconds=self.interval.total_seconds(), timezone=self.clock.tz),
            id=OVERDUE_JOB_ID,
            name="Mark overdue borrows",
            next_run_time=first_run,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60 * 60,
        )
        self._scheduler.start()
        logger.info(f"Borrow scheduler started, interval={self.interval}, timezone={self._scheduler.timezone}")

    async def stop(self) -> None:
        """Stop timers, wait (bounded) for passes that are still running, then shut down."""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        # pause() hanya menghentikan timer; shutdown() membatalkan job coroutine yang sedang jalan
        if scheduler.running:
            scheduler.pause()
        if self._in_flight:
            logger.info(f"Waiting up to {self.shutdown_grace}s for {len(self._in_flight)} running pass(es).")
            _, not_done = await asyncio.wait(set(self._in_flight), timeout=self.shutdown_grace)
            if not_done:
                logger.warning(f"{len(not_done)} pass(es) still running after {self.shutdown_grace}s; cancelling.")
            for task in not_done:
                task.cancel()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        logger.info("Borrow scheduler stopped.")

    async def _tracked(self, pass_fn) -> PassResult:
        task = asyncio.current_task()
        self._in_flight.add(task)
        try:
            return await pass_fn()
        finally:
            self._in_flight.discard(task)

    async def run_due_soon_pass(self) -> PassResult:
        return await self._tracked(self._due_soon_pass)

    async def run_overdue_pass(self) -> PassResult:
        return await self._tracked(self._overdue_pass)

    # --- Pass 1: reminder jatuh tempo hari ini ---
    async def _due_soon_pass(self) -> PassResult:
        now = self.clock.now()
        start, end = self.clock.start_of_day(now), self.clock.end_of_day(now)
        logger.info(f"Running due-soon pass at {now.isoformat()} for window [{start.isoformat()}, {end.isoformat()})")
        result = PassResult()
        try:
            records = await self.borrows.find_by_status_and_due_date_range(BorrowStatus.BORROWED, start, end)
        except Exception:
            logger.error("Due-soon pass could not query borrows.", exc_info=True)
            return result
        result.matched = len(records)

        outcomes = await asyncio.gather(
            *(self.dispatcher.send(NotificationKind.DUE_REMINDER, record) for record in records)
        )
        result.succeeded = sum(1 for ok in outcomes if ok)
        result.failed = result.matched - result.succeeded
        logger.info(f"Due-soon pass finished. Matched: {result.matched}, Sent: {result.succeeded}, Failed: {result.failed}")
        return result

    # --- Pass 2: sweep overdue ---
    async def _overdue_pass(self) -> PassResult:
        now = self.clock.now()
        logger.info(f"Running overdue pass at {now.isoformat()}")
        result = PassResult()
        try:
            # Predikat kanonik: status borrowed DAN due_date < now
            records = await self.borrows.find_by_status_and_due_date_range(BorrowStatus.BORROWED, None, now)
        except Exception:
            logger.error("Overdue pass could not query borrows.", exc_info=True)
            return result
        result.matched = len(records)

        for record in records:
            try:
                updated = await self.service.mark_overdue(record)
            except InvalidTransition as e:
                # Sudah diubah admin (mis. returned) sejak query
                logger.info(f"Skipping borrow {record.borrow_code}: {e}")
                result.skipped += 1
                continue
            except BorrowError:
                logger.error(f"Overdue transition for borrow {record.borrow_code} failed.", exc_info=True)
                result.failed += 1
                continue
            except Exception:
                logger.error(f"Unexpected error marking borrow {record.borrow_code} overdue.", exc_info=True)
                result.failed += 1
                continue

            if await self.dispatcher.send(NotificationKind.OVERDUE, updated):
                result.succeeded += 1
            else:
                result.failed += 1

        logger.info(
            f"Overdue pass finished. Matched: {result.matched}, Notified: {result.succeeded}, "
            f"Skipped: {result.skipped}, Failed: {result.failed}"
        )
        return result

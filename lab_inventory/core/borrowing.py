# lab_inventory/core/borrowing.py
import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from lab_inventory.core.availability import ItemAvailabilityGate
from lab_inventory.core.clock import Clock
from lab_inventory.core.errors import (
    InvalidTransition, NotFound, PermissionDenied, ValidationError
)
from lab_inventory.core.notifications import NotificationDispatcher
from lab_inventory.db.repositories import (
    BorrowFilter, BorrowRepository, DuplicateBorrowCode, ItemRepository, UserRepository, load_hydrated
)
from lab_inventory.models.borrowing import BorrowRecord, BorrowStats, HydratedBorrow, LineItem
from lab_inventory.models.enum import BorrowStatus, NotificationKind
from lab_inventory.models.user import Actor

logger = logging.getLogger(__name__)

BORROW_CODE_ATTEMPTS = 5


class Trigger(str, Enum):
    ADMIN = "admin"
    SYSTEM = "system"


# --- Tabel transisi: satu-satunya sumber kebenaran ---
TRANSITIONS: Dict[Tuple[BorrowStatus, BorrowStatus], Trigger] = {
    (BorrowStatus.PENDING, BorrowStatus.APPROVED): Trigger.ADMIN,
    (BorrowStatus.PENDING, BorrowStatus.REJECTED): Trigger.ADMIN,
    (BorrowStatus.APPROVED, BorrowStatus.BORROWED): Trigger.ADMIN,
    (BorrowStatus.APPROVED, BorrowStatus.RETURNED): Trigger.ADMIN,
    (BorrowStatus.BORROWED, BorrowStatus.RETURNED): Trigger.ADMIN,
    (BorrowStatus.BORROWED, BorrowStatus.OVERDUE): Trigger.SYSTEM,
    (BorrowStatus.OVERDUE, BorrowStatus.RETURNED): Trigger.ADMIN,
}


def check_transition(current: BorrowStatus, requested: BorrowStatus, trigger: Trigger) -> None:
    """Raise InvalidTransition unless (current -> requested) is allowed for this trigger."""
    if TRANSITIONS.get((current, requested)) != trigger:
        raise InvalidTransition(current, requested)


def allowed_next(current: BorrowStatus, trigger: Trigger = Trigger.ADMIN) -> List[BorrowStatus]:
    return [to for (frm, to), t in TRANSITIONS.items() if frm == current and t == trigger]


def generate_borrow_code(clock: Clock, attempt: int = 0) -> str:
    """'BRW' + 8 digit terakhir timestamp lokal (ms). attempt menggeser suffix saat bentrok."""
    now = clock.now()
    local_ms = int((now.timestamp() + now.utcoffset().total_seconds()) * 1000) + attempt
    return "BRW" + str(local_ms)[-8:]


class BorrowService:
    """Owns the borrow lifecycle: creation, admin status updates and the automatic overdue edge."""

    def __init__(
        self,
        borrows: BorrowRepository,
        users: UserRepository,
        items: ItemRepository,
        gate: ItemAvailabilityGate,
        clock: Clock,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.borrows = borrows
        self.users = users
        self.items = items
        self.gate = gate
        self.clock = clock
        self.dispatcher = dispatcher

    # --- Create ---
    async def create_borrow(self, actor: Actor, request: BorrowRecord.Create) -> BorrowRecord:
        purpose = (request.purpose or "").strip()
        if not purpose:
            raise ValidationError("Borrow purpose is required.")
        now = self.clock.now()
        due_date = self.clock.localize(request.due_date)
        if due_date <= now:
            raise ValidationError("Due date must be after the borrow date.")
        item_ids = [line.item_id for line in request.items]
        if len(item_ids) != len(set(item_ids)):
            raise ValidationError("Each item may appear only once per borrow.")

        # Reservasi all-or-nothing; NotFound / Conflict naik ke pemanggil
        await self.gate.reserve(item_ids)

        try:
            record = await self._insert_with_unique_code(BorrowRecord(
                borrow_code=generate_borrow_code(self.clock),
                user_id=actor.user_id,
                items=[LineItem(**line.model_dump()) for line in request.items],
                borrow_date=now,
                due_date=due_date,
                status=BorrowStatus.PENDING,
                purpose=purpose,
                created_at=now,
                updated_at=now,
            ))
        except Exception:
            logger.error(f"Creating borrow for user {actor.user_id} failed; releasing reserved items.")
            await self.gate.release({item_id: None for item_id in item_ids})
            raise

        logger.info(f"Borrow {record.borrow_code} created by user {actor.user_id} for {len(item_ids)} item(s).")
        self._notify(NotificationKind.NEW_BORROW, record)
        return record

    async def _insert_with_unique_code(self, record: BorrowRecord) -> BorrowRecord:
        for attempt in range(BORROW_CODE_ATTEMPTS):
            try:
                return await self.borrows.create(record)
            except DuplicateBorrowCode:
                logger.debug(f"Borrow code {record.borrow_code} taken, retrying.")
                record = record.model_copy(update={"borrow_code": generate_borrow_code(self.clock, attempt + 1)})
        raise DuplicateBorrowCode(record.borrow_code)

    # --- Update status (admin) ---
    async def update_status(self, borrow_id: str, actor: Actor, update: BorrowRecord.StatusUpdate) -> BorrowRecord:
        if not actor.is_admin:
            raise PermissionDenied("Only admins can change borrow status.")
        record = await self._get_or_404(borrow_id)
        previous = record.status
        requested = update.status
        check_transition(previous, requested, Trigger.ADMIN)

        now = self.clock.now()
        changes = {"status": requested, "updated_at": now}
        if requested in (BorrowStatus.APPROVED, BorrowStatus.REJECTED):
            changes["approved_by"] = actor.user_id
        if requested == BorrowStatus.REJECTED:
            changes["rejection_reason"] = update.rejection_reason
        if requested == BorrowStatus.RETURNED:
            if update.return_condition is None:
                raise ValidationError("Return condition is required when returning a borrow.")
            changes.update(
                return_date=now,
                return_condition=update.return_condition,
                return_notes=update.return_notes,
                return_processor=actor.user_id,
                items=[line.model_copy(update={"condition": update.return_condition}) for line in record.items],
            )
        updated = record.model_copy(update=changes)

        await self._commit(updated, previous, requested)

        # Efek ke item setelah commit; kalau gagal, status dikembalikan supaya bisa diulang
        if requested in (BorrowStatus.REJECTED, BorrowStatus.RETURNED):
            condition = update.return_condition if requested == BorrowStatus.RETURNED else None
            try:
                await self._release(updated, condition)
            except Exception:
                await self._restore(record, requested)
                raise

        logger.info(f"Borrow {record.borrow_code}: {previous.value} -> {requested.value} by {actor.user_id}")
        self._notify(NotificationKind.STATUS_CHANGED, updated, previous)
        return updated

    # --- Transisi otomatis (scheduler) ---
    async def mark_overdue(self, record: BorrowRecord) -> BorrowRecord:
        """borrowed -> overdue. Raises InvalidTransition if the record moved on meanwhile."""
        check_transition(record.status, BorrowStatus.OVERDUE, Trigger.SYSTEM)
        now = self.clock.now()
        if not record.due_date < now:
            raise ValidationError(f"Borrow {record.borrow_code} is not past its due date.")
        updated = record.model_copy(update={"status": BorrowStatus.OVERDUE, "updated_at": now})
        await self._commit(updated, record.status, BorrowStatus.OVERDUE)
        logger.info(f"Borrow {record.borrow_code} marked overdue (due {record.due_date.isoformat()}).")
        return updated

    async def _commit(self, updated: BorrowRecord, previous: BorrowStatus, requested: BorrowStatus) -> None:
        if await self.borrows.save(updated, expected_status=previous):
            return
        # Status berubah di antara baca dan tulis: tolak, jangan timpa
        current = await self.borrows.find_by_id(updated.id)
        if current is None:
            raise NotFound(f"Borrow '{updated.id}' not found.")
        raise InvalidTransition(current.status, requested)

    async def _release(self, record: BorrowRecord, condition) -> None:
        try:
            await self.gate.release({item_id: condition for item_id in record.item_ids})
        except NotFound as e:
            # Item sudah dihapus dari inventaris; status borrow tetap ter-commit
            logger.warning(f"Borrow {record.borrow_code}: could not release missing items {e.missing_ids}")

    async def _restore(self, original: BorrowRecord, committed: BorrowStatus) -> None:
        logger.error(
            f"Releasing items of borrow {original.borrow_code} failed; "
            f"restoring status '{original.status.value}'."
        )
        if not await self.borrows.save(original, expected_status=committed):
            logger.error(f"Borrow {original.borrow_code} changed again before it could be restored.")

    # --- Read ---
    async def _get_or_404(self, borrow_id: str) -> BorrowRecord:
        record = await self.borrows.find_by_id(borrow_id)
        if record is None:
            raise NotFound(f"Borrow '{borrow_id}' not found.")
        return record

    async def get_borrow(self, borrow_id: str, actor: Actor) -> HydratedBorrow:
        record = await self._get_or_404(borrow_id)
        if not actor.is_admin and record.user_id != actor.user_id:
            raise PermissionDenied("You do not have access to this borrow.")
        return await self.hydrate(record)

    async def list_borrows(
        self, actor: Actor, flt: BorrowFilter, page: int = 1, limit: int = 10
    ) -> Tuple[List[HydratedBorrow], int]:
        if not actor.is_admin:
            flt.user_id = actor.user_id
        page = max(page, 1)
        records, total = await self.borrows.list(flt, skip=(page - 1) * limit, limit=limit)
        return [await self.hydrate(r) for r in records], total

    async def hydrate(self, record: BorrowRecord) -> HydratedBorrow:
        return await load_hydrated(record, self.users, self.items)

    async def stats(self) -> BorrowStats:
        now = self.clock.now()
        counts = await self.borrows.count_by_status()
        late_unswept = await self.borrows.find_by_status_and_due_date_range(BorrowStatus.BORROWED, None, now)
        due_today = await self.borrows.find_by_status_and_due_date_range(
            BorrowStatus.BORROWED, self.clock.start_of_day(now), self.clock.end_of_day(now)
        )
        already_overdue = sum(c.count for c in counts if c.status == BorrowStatus.OVERDUE)
        return BorrowStats(
            by_status=[
                BorrowStats.StatusCount(status=c.status, count=c.count, items=c.items)
                for c in sorted(counts, key=lambda c: c.status.value)
            ],
            overdue=already_overdue + len(late_unswept),
            return_today=len(due_today),
        )

    def _notify(self, kind: NotificationKind, record: BorrowRecord, previous: Optional[BorrowStatus] = None) -> None:
        if self.dispatcher is not None:
            self.dispatcher.notify(kind, record, previous)

from datetime import timedelta

import pytest

from lab_inventory.core.borrowing import TRANSITIONS, Trigger, allowed_next, check_transition, generate_borrow_code
from lab_inventory.core.errors import Conflict, InvalidTransition, NotFound, PermissionDenied, ValidationError
from lab_inventory.db.repositories import BorrowFilter
from lab_inventory.models.borrowing import BorrowRecord, LineItem
from lab_inventory.models.enum import BorrowStatus, ItemCondition, ItemStatus, NotificationKind, UserRole
from lab_inventory.models.user import Actor

from conftest import NOW, borrow_request, make_borrowed

ALL_STATUSES = list(BorrowStatus)


def status_update(status, **kwargs):
    return BorrowRecord.StatusUpdate(status=status, **kwargs)


# --- Create ---

async def test_create_reserves_items_and_notifies_admin(services, student, item_repo, mailer):
    record = await services.borrow_service.create_borrow(
        student, borrow_request("item-0001", "item-0002", due=NOW + timedelta(days=3))
    )
    assert record.id
    assert record.status == BorrowStatus.PENDING
    assert record.borrow_code.startswith("BRW") and len(record.borrow_code) == 11
    assert record.borrow_date == NOW
    assert record.user_id == "user-1"
    assert item_repo.get("item-0001").status == ItemStatus.BORROWED
    assert item_repo.get("item-0002").status == ItemStatus.BORROWED

    await services.dispatcher.drain()
    [intent] = mailer.of_kind(NotificationKind.NEW_BORROW)
    assert intent.borrow.user.name == "Budi"
    assert intent.borrow.item_name("item-0001") == "Laptop Dell"


@pytest.mark.parametrize("purpose", [None, "", "   "])
async def test_purpose_is_required(services, student, item_repo, purpose):
    with pytest.raises(ValidationError):
        await services.borrow_service.create_borrow(
            student, borrow_request("item-0001", due=NOW + timedelta(days=1), purpose=purpose)
        )
    assert item_repo.get("item-0001").status == ItemStatus.AVAILABLE


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(hours=-1)])
async def test_due_date_must_be_after_borrow_date(services, student, borrow_repo, offset):
    with pytest.raises(ValidationError):
        await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + offset))
    assert borrow_repo._records == {}


async def test_naive_due_date_is_local_time(services, student):
    due = (NOW + timedelta(days=2)).replace(tzinfo=None)
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=due))
    assert record.due_date == NOW + timedelta(days=2)


async def test_duplicate_items_rejected(services, student):
    request = BorrowRecord.Create.model_construct(
        items=[LineItem(item_id="item-0001"), LineItem(item_id="item-0001")],
        due_date=NOW + timedelta(days=1),
        purpose="Praktikum",
    )
    with pytest.raises(ValidationError):
        await services.borrow_service.create_borrow(student, request)


async def test_unavailable_item_creates_nothing(services, student, item_repo, borrow_repo):
    with pytest.raises(Conflict) as exc_info:
        await services.borrow_service.create_borrow(
            student, borrow_request("item-0001", "item-0005", due=NOW + timedelta(days=1))
        )
    assert exc_info.value.conflicting_items == ["item-0005"]
    assert item_repo.get("item-0001").status == ItemStatus.AVAILABLE
    assert borrow_repo._records == {}


async def test_unknown_item_creates_nothing(services, student, borrow_repo):
    with pytest.raises(NotFound) as exc_info:
        await services.borrow_service.create_borrow(
            student, borrow_request("item-0001", "nope", due=NOW + timedelta(days=1))
        )
    assert exc_info.value.missing_ids == ["nope"]
    assert borrow_repo._records == {}


async def test_second_borrow_of_same_item_conflicts(services, student, admin):
    await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    other = Actor(user_id="user-2", role=UserRole.USER)
    with pytest.raises(Conflict):
        await services.borrow_service.create_borrow(other, borrow_request("item-0001", due=NOW + timedelta(days=1)))


async def test_failed_insert_releases_reserved_items(services, student, item_repo, borrow_repo, monkeypatch):
    async def broken_create(record):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(borrow_repo, "create", broken_create)
    with pytest.raises(RuntimeError):
        await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    assert item_repo.get("item-0001").status == ItemStatus.AVAILABLE


async def test_borrow_code_collision_retries(services, student, clock):
    first = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    second = await services.borrow_service.create_borrow(student, borrow_request("item-0002", due=NOW + timedelta(days=1)))
    assert first.borrow_code == generate_borrow_code(clock)
    assert second.borrow_code == generate_borrow_code(clock, 1)


# --- Transition table ---

def test_transition_table_is_closed():
    assert allowed_next(BorrowStatus.PENDING) == [BorrowStatus.APPROVED, BorrowStatus.REJECTED]
    assert allowed_next(BorrowStatus.BORROWED) == [BorrowStatus.RETURNED]
    assert allowed_next(BorrowStatus.BORROWED, Trigger.SYSTEM) == [BorrowStatus.OVERDUE]
    assert allowed_next(BorrowStatus.REJECTED) == []
    assert allowed_next(BorrowStatus.RETURNED) == []
    with pytest.raises(InvalidTransition):
        check_transition(BorrowStatus.BORROWED, BorrowStatus.OVERDUE, Trigger.ADMIN)


@pytest.mark.parametrize("current", ALL_STATUSES)
@pytest.mark.parametrize("requested", ALL_STATUSES)
async def test_admin_update_follows_transition_table(services, student, admin, borrow_repo, current, requested):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=2)))
    borrow_repo._records[record.id] = borrow_repo._records[record.id].model_copy(update={"status": current})
    update = status_update(requested, return_condition=ItemCondition.GOOD)

    if TRANSITIONS.get((current, requested)) == Trigger.ADMIN:
        updated = await services.borrow_service.update_status(record.id, admin, update)
        assert updated.status == requested
        assert borrow_repo._records[record.id].status == requested
    else:
        with pytest.raises(InvalidTransition) as exc_info:
            await services.borrow_service.update_status(record.id, admin, update)
        assert exc_info.value.current == current
        assert exc_info.value.requested == requested
        assert borrow_repo._records[record.id].status == current


@pytest.mark.parametrize("current", ALL_STATUSES)
async def test_only_borrowed_can_become_overdue(services, student, borrow_repo, clock, current):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    forced = borrow_repo._records[record.id].model_copy(update={"status": current})
    borrow_repo._records[record.id] = forced
    clock.advance(timedelta(days=2))

    if current == BorrowStatus.BORROWED:
        updated = await services.borrow_service.mark_overdue(forced)
        assert updated.status == BorrowStatus.OVERDUE
    else:
        with pytest.raises(InvalidTransition):
            await services.borrow_service.mark_overdue(forced)
        assert borrow_repo._records[record.id].status == current


async def test_mark_overdue_requires_past_due(services, student, admin, clock):
    record = await make_borrowed(services, clock, student, admin, "item-0001", NOW + timedelta(hours=1))
    with pytest.raises(ValidationError):
        await services.borrow_service.mark_overdue(record)


# --- Status update effects ---

async def test_approve_records_admin(services, student, admin, item_repo):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    updated = await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.APPROVED))
    assert updated.approved_by == "admin-1"
    assert item_repo.get("item-0001").status == ItemStatus.BORROWED


async def test_reject_releases_items_with_condition_unchanged(services, student, admin, item_repo, mailer):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    updated = await services.borrow_service.update_status(
        record.id, admin, status_update(BorrowStatus.REJECTED, rejection_reason="Barang sedang dipakai kelas lain")
    )
    assert updated.rejection_reason == "Barang sedang dipakai kelas lain"
    item = item_repo.get("item-0001")
    assert item.status == ItemStatus.AVAILABLE
    assert item.condition == ItemCondition.GOOD

    await services.dispatcher.drain()
    [intent] = mailer.of_kind(NotificationKind.STATUS_CHANGED)
    assert intent.previous_status == BorrowStatus.PENDING
    assert intent.borrow.record.status == BorrowStatus.REJECTED


async def test_return_from_approved_releases_items_with_condition(services, student, admin, item_repo, clock):
    record = await services.borrow_service.create_borrow(
        student, borrow_request("item-0001", "item-0002", due=NOW + timedelta(days=5))
    )
    await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.APPROVED))
    clock.advance(timedelta(days=2, hours=1))
    returned = await services.borrow_service.update_status(
        record.id, admin,
        status_update(BorrowStatus.RETURNED, return_condition=ItemCondition.LIGHT_DAMAGE, return_notes="Layar tergores"),
    )

    assert returned.return_date == clock.now()
    assert returned.return_processor == "admin-1"
    assert returned.return_notes == "Layar tergores"
    assert all(line.condition == ItemCondition.LIGHT_DAMAGE for line in returned.items)
    for item_id in ("item-0001", "item-0002"):
        item = item_repo.get(item_id)
        assert item.status == ItemStatus.AVAILABLE
        assert item.condition == ItemCondition.LIGHT_DAMAGE


async def test_return_requires_condition(services, student, admin, borrow_repo):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.APPROVED))
    with pytest.raises(ValidationError):
        await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.RETURNED))
    assert borrow_repo._records[record.id].status == BorrowStatus.APPROVED


async def test_overdue_record_can_be_returned(services, student, admin, clock, item_repo):
    record = await make_borrowed(services, clock, student, admin, "item-0003", NOW - timedelta(days=1))
    overdue = await services.borrow_service.mark_overdue(record)
    returned = await services.borrow_service.update_status(
        overdue.id, admin, status_update(BorrowStatus.RETURNED, return_condition=ItemCondition.GOOD)
    )
    assert returned.status == BorrowStatus.RETURNED
    assert item_repo.get("item-0003").status == ItemStatus.AVAILABLE


async def test_failed_release_restores_status_so_return_can_be_retried(
    services, student, admin, clock, item_repo, borrow_repo, mailer, monkeypatch
):
    record = await make_borrowed(services, clock, student, admin, "item-0001", NOW + timedelta(days=1))
    await services.dispatcher.drain()
    mailer.sent.clear()

    async def store_down(ids, status, condition=None):
        raise ConnectionError("item store unavailable")

    monkeypatch.setattr(item_repo, "update_status_and_condition", store_down)
    with pytest.raises(ConnectionError):
        await services.borrow_service.update_status(
            record.id, admin, status_update(BorrowStatus.RETURNED, return_condition=ItemCondition.LIGHT_DAMAGE)
        )
    stored = borrow_repo._records[record.id]
    assert stored.status == BorrowStatus.BORROWED
    assert stored.return_date is None
    assert item_repo.get("item-0001").status == ItemStatus.BORROWED
    await services.dispatcher.drain()
    assert mailer.of_kind(NotificationKind.STATUS_CHANGED) == []

    monkeypatch.undo()
    returned = await services.borrow_service.update_status(
        record.id, admin, status_update(BorrowStatus.RETURNED, return_condition=ItemCondition.LIGHT_DAMAGE)
    )
    assert returned.status == BorrowStatus.RETURNED
    assert item_repo.get("item-0001").status == ItemStatus.AVAILABLE
    assert item_repo.get("item-0001").condition == ItemCondition.LIGHT_DAMAGE


async def test_failed_release_on_reject_restores_pending(services, student, admin, item_repo, borrow_repo, monkeypatch):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))

    async def store_down(ids, status, condition=None):
        raise ConnectionError("item store unavailable")

    monkeypatch.setattr(item_repo, "update_status_and_condition", store_down)
    with pytest.raises(ConnectionError):
        await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.REJECTED))
    assert borrow_repo._records[record.id].status == BorrowStatus.PENDING
    assert borrow_repo._records[record.id].approved_by is None


async def test_non_admin_cannot_change_status(services, student, borrow_repo):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    with pytest.raises(PermissionDenied):
        await services.borrow_service.update_status(record.id, student, status_update(BorrowStatus.APPROVED))
    assert borrow_repo._records[record.id].status == BorrowStatus.PENDING


async def test_unknown_borrow(services, admin):
    with pytest.raises(NotFound):
        await services.borrow_service.update_status("missing", admin, status_update(BorrowStatus.APPROVED))


async def test_concurrent_change_is_rejected_not_overwritten(services, student, admin, borrow_repo, item_repo, monkeypatch):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    original_save = borrow_repo.save

    async def save_after_someone_else(updated, expected_status):
        # Another admin rejects the record between our read and our write
        stored = borrow_repo._records[updated.id]
        borrow_repo._records[updated.id] = stored.model_copy(update={"status": BorrowStatus.REJECTED})
        return await original_save(updated, expected_status)

    monkeypatch.setattr(borrow_repo, "save", save_after_someone_else)
    with pytest.raises(InvalidTransition) as exc_info:
        await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.APPROVED))
    assert exc_info.value.current == BorrowStatus.REJECTED
    assert borrow_repo._records[record.id].status == BorrowStatus.REJECTED
    assert borrow_repo._records[record.id].approved_by is None


async def test_notification_failure_is_not_surfaced(services, student, admin, mailer, monkeypatch):
    async def broken_send(intent):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(mailer, "send", broken_send)
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    updated = await services.borrow_service.update_status(record.id, admin, status_update(BorrowStatus.APPROVED))
    await services.dispatcher.drain()

    assert updated.status == BorrowStatus.APPROVED
    assert services.dispatcher.failed == 2
    assert services.dispatcher.sent == 0


# --- Derived fields ---

async def test_lateness_and_duration(services, student, admin, clock):
    record = await make_borrowed(services, clock, student, admin, "item-0001", NOW + timedelta(days=2))
    assert not record.is_late(clock.now())

    clock.set(record.borrow_date + timedelta(days=2, hours=12))
    assert record.is_late(clock.now())
    assert record.duration_days(clock.now()) == 3

    clock.set(record.borrow_date + timedelta(days=3))
    returned = await services.borrow_service.update_status(
        record.id, admin, status_update(BorrowStatus.RETURNED, return_condition=ItemCondition.GOOD)
    )
    clock.advance(timedelta(days=10))
    assert not returned.is_late(clock.now())
    assert returned.duration_days(clock.now()) == 3


# --- Read side ---

async def test_owner_or_admin_can_read(services, student, admin):
    record = await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    assert (await services.borrow_service.get_borrow(record.id, student)).record.id == record.id
    assert (await services.borrow_service.get_borrow(record.id, admin)).user.name == "Budi"
    with pytest.raises(PermissionDenied):
        await services.borrow_service.get_borrow(record.id, Actor(user_id="user-2", role=UserRole.USER))


async def test_list_is_scoped_to_caller(services, student, admin, clock):
    other = Actor(user_id="user-2", role=UserRole.USER)
    await services.borrow_service.create_borrow(student, borrow_request("item-0001", due=NOW + timedelta(days=1)))
    clock.advance(timedelta(minutes=1))
    await services.borrow_service.create_borrow(other, borrow_request("item-0002", due=NOW + timedelta(days=1)))

    mine, total = await services.borrow_service.list_borrows(student, BorrowFilter())
    assert total == 1
    assert mine[0].record.user_id == "user-1"

    everything, total = await services.borrow_service.list_borrows(admin, BorrowFilter())
    assert total == 2
    assert everything[0].record.user_id == "user-2"  # terbaru dulu


async def test_stats_counts_late_borrows_once(services, student, admin, clock):
    await make_borrowed(services, clock, student, admin, "item-0001", NOW - timedelta(days=1))
    swept = await make_borrowed(services, clock, student, admin, "item-0002", NOW - timedelta(days=2))
    await services.borrow_service.mark_overdue(swept)
    await make_borrowed(services, clock, student, admin, "item-0003", NOW + timedelta(hours=3))
    await services.borrow_service.create_borrow(student, borrow_request("item-0004", due=NOW + timedelta(days=4)))

    stats = await services.borrow_service.stats()
    by_status = {row.status: row.count for row in stats.by_status}
    assert by_status == {"borrowed": 2, "overdue": 1, "pending": 1}
    assert stats.overdue == 2
    assert stats.return_today == 1

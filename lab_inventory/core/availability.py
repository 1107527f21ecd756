# lab_inventory/core/availability.py
import logging
from typing import Dict, Iterable, List, Optional

from lab_inventory.core.errors import Conflict, NotFound
from lab_inventory.db.repositories import ItemRepository
from lab_inventory.models.enum import ItemCondition, ItemStatus
from lab_inventory.models.item import Item

logger = logging.getLogger(__name__)


class ItemAvailabilityGate:
    """
    Satu-satunya jalur yang mengubah status/kondisi item.

    reserve() bersifat all-or-nothing: tiap item di-compare-and-set dari
    Tersedia ke Dipinjam dengan urutan id yang tetap, dan semua perubahan yang
    sudah terjadi dikembalikan jika ada satu item yang gagal. Urutan tetap
    membuat dua reservasi yang saling overlap tidak bisa sama-sama gagal.
    """

    def __init__(self, items: ItemRepository):
        self.items = items

    async def check(self, item_ids: Iterable[str]) -> List[Item]:
        """Validate existence and availability without reserving anything."""
        ids = sorted(set(item_ids))
        found = await self.items.find_by_ids(ids)
        found_ids = {item.id for item in found}
        missing = [i for i in ids if i not in found_ids]
        if missing:
            logger.info(f"Reservation check failed, unknown items: {missing}")
            raise NotFound(f"Items not found: {', '.join(missing)}", missing_ids=missing)
        unavailable = [item for item in found if item.status != ItemStatus.AVAILABLE]
        if unavailable:
            raise Conflict(
                f"Items not available: {', '.join(item.name for item in unavailable)}",
                conflicting_items=[item.id for item in unavailable],
            )
        return found

    async def reserve(self, item_ids: Iterable[str]) -> List[Item]:
        ids = sorted(set(item_ids))
        items = await self.check(ids)
        names = {item.id: item.name for item in items}

        reserved: List[str] = []
        for item_id in ids:
            ok = await self.items.compare_and_set_status(item_id, ItemStatus.AVAILABLE, ItemStatus.BORROWED)
            if not ok:
                logger.warning(f"Item {item_id} taken concurrently; rolling back {len(reserved)} reservation(s).")
                await self._rollback(reserved)
                raise Conflict(
                    f"Items not available: {names.get(item_id, item_id)}",
                    conflicting_items=[item_id],
                )
            reserved.append(item_id)

        logger.info(f"Reserved items {ids}")
        return items

    async def release(self, item_conditions: Dict[str, Optional[ItemCondition]]) -> None:
        """Set items back to Tersedia. A None condition keeps the item's current condition."""
        ids = sorted(item_conditions)
        found = {item.id for item in await self.items.find_by_ids(ids)}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFound(f"Items not found: {', '.join(missing)}", missing_ids=missing)

        # Kelompokkan per kondisi supaya jadi satu update per kondisi
        by_condition: Dict[Optional[ItemCondition], List[str]] = {}
        for item_id in ids:
            by_condition.setdefault(item_conditions[item_id], []).append(item_id)
        for condition, group in by_condition.items():
            await self.items.update_status_and_condition(group, ItemStatus.AVAILABLE, condition)
        logger.info(f"Released items {ids}")

    async def _rollback(self, reserved: List[str]) -> None:
        for item_id in reserved:
            ok = await self.items.compare_and_set_status(item_id, ItemStatus.BORROWED, ItemStatus.AVAILABLE)
            if not ok:
                logger.error(f"Rollback of item {item_id} found unexpected status; left untouched.")

# lab_inventory/seed.py
"""Isi database dengan admin, user contoh dan barang lab. Jalankan: python -m lab_inventory.seed [--reset]"""
import argparse
import asyncio
from itertools import cycle
from typing import List

from loguru import logger

from lab_inventory.core.config import DATABASE_NAME
from lab_inventory.db.database import close_db, init_db
from lab_inventory.db.documents import BorrowDocument, ItemDocument, UserDocument
from lab_inventory.models.enum import ItemCategory, UserRole

ITEM_NAMES = {
    ItemCategory.HARDWARE: ["Laptop Dell", "PC Desktop HP", "MacBook Pro", "ThinkPad", "ROG Gaming Laptop"],
    ItemCategory.PERIPHERAL: ["Mouse Gaming", "Keyboard Mechanical", 'Monitor 24"', "Printer", "Scanner"],
    ItemCategory.DEVELOPMENT_TOOLS: ["Arduino Uno", "Raspberry Pi", "NodeMCU", "Sensor Kit", "Robot Kit"],
    ItemCategory.SOFTWARE_LICENSE: ["Visual Studio", "Adobe Creative Suite", "Windows 11 Pro", "Office 365", "AutoCAD"],
    ItemCategory.LAB_EQUIPMENT: ["LAN Tester", "Crimping Tool", "Multimeter", "Toolkit Set", "Soldering Iron"],
}
LOCATIONS = ["Lab 1", "Lab 2", "Lab 3", "Gudang"]


def build_sample_items() -> List[dict]:
    """One item per name, codes ITM0001.. in a stable order (plain dicts, no DB needed)."""
    items = []
    locations = cycle(LOCATIONS)
    index = 0
    for category, names in ITEM_NAMES.items():
        for name in names:
            index += 1
            items.append({
                "code": f"ITM{index:04d}",
                "name": name,
                "category": category,
                "location": next(locations),
            })
    return items


def build_sample_users(admin_email: str) -> List[dict]:
    return [
        {"name": "Admin Lab", "email": admin_email, "role": UserRole.ADMIN},
        {"name": "Siswa Contoh", "email": "siswa@example.com", "class_name": "XII RPL 1", "role": UserRole.USER},
    ]


async def seed(reset: bool, admin_email: str) -> None:
    await init_db()
    try:
        if reset:
            # Borrow adalah audit trail; reset hanya untuk database development
            await BorrowDocument.delete_all()
            await ItemDocument.delete_all()
            await UserDocument.delete_all()
            logger.warning(f"Collections in '{DATABASE_NAME}' cleared.")

        if await ItemDocument.count() == 0:
            items = [ItemDocument(**data) for data in build_sample_items()]
            await ItemDocument.insert_many(items)
            logger.info(f"Inserted {len(items)} items.")
        else:
            logger.info("Items already present; skipping item seed.")

        if await UserDocument.count() == 0:
            for data in build_sample_users(admin_email):
                user = UserDocument(**data)
                await user.insert()
                logger.info(f"Created {user.role.value} '{user.name}' with id {user.id}")
        else:
            logger.info("Users already present; skipping user seed.")
    finally:
        close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the lab inventory database.")
    parser.add_argument("--reset", action="store_true", help="Delete existing borrows, items and users first.")
    parser.add_argument("--admin-email", default="admin@example.com")
    args = parser.parse_args()
    asyncio.run(seed(args.reset, args.admin_email))


if __name__ == "__main__":
    main()

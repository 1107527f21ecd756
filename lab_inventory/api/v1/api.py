# lab_inventory/api/v1/api.py
from fastapi import APIRouter

from lab_inventory.api.v1.endpoints import borrowings

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(borrowings.router, prefix="/borrows")

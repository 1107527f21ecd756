# lab_inventory/api/v1/endpoints/borrowings.py
from typing import Optional
from fastapi import APIRouter, Depends, status, Path, Body, Query, Request
from loguru import logger
from datetime import datetime

from lab_inventory.core.config import BORROW_CREATE_RATE_LIMIT
from lab_inventory.core.container import Services
from lab_inventory.core.rate_limiter import limiter
from lab_inventory.core.security import get_current_actor, require_admin
from lab_inventory.db.repositories import BorrowFilter
from lab_inventory.models.borrowing import BorrowPage, BorrowRecord, BorrowStats
from lab_inventory.models.enum import BorrowStatus
from lab_inventory.models.user import Actor

router = APIRouter(
    tags=["Borrows"]
)


def get_services(request: Request) -> Services:
    return request.app.state.services


# --- POST / : buat peminjaman (semua user login) ---
@router.post(
    "/",
    response_model=BorrowRecord.Response,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(BORROW_CREATE_RATE_LIMIT)
async def create_borrow(
    request: Request,
    borrow_request: BorrowRecord.Create = Body(...),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    """Submit a borrow request. All items are reserved at once or the request fails."""
    logger.info(f"User '{actor.user_id}' submitting borrow for {len(borrow_request.items)} item(s).")
    record = await services.borrow_service.create_borrow(actor, borrow_request)
    hydrated = await services.borrow_service.hydrate(record)
    return hydrated.to_response(services.clock.now())


# --- GET /my : peminjaman milik user sendiri ---
@router.get("/my", response_model=BorrowPage)
async def read_my_borrows(
    status_filter: Optional[BorrowStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    flt = BorrowFilter(status=status_filter, user_id=actor.user_id)
    borrows, total = await services.borrow_service.list_borrows(actor, flt, page=page, limit=limit)
    now = services.clock.now()
    return BorrowPage(total=total, page=page, limit=limit, borrows=[b.to_response(now) for b in borrows])


# --- GET / : semua peminjaman (admin) ---
@router.get("/", response_model=BorrowPage)
async def read_borrows(
    status_filter: Optional[BorrowStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Borrow date lower bound (inclusive)"),
    end_date: Optional[datetime] = Query(None, description="Borrow date upper bound (inclusive)"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    clock = services.clock
    flt = BorrowFilter(
        status=status_filter,
        user_id=user_id,
        borrow_date_from=clock.localize(start_date) if start_date else None,
        borrow_date_to=clock.localize(end_date) if end_date else None,
    )
    borrows, total = await services.borrow_service.list_borrows(actor, flt, page=page, limit=limit)
    now = clock.now()
    return BorrowPage(total=total, page=page, limit=limit, borrows=[b.to_response(now) for b in borrows])


# --- GET /stats (admin) ---
@router.get("/stats", response_model=BorrowStats, dependencies=[Depends(require_admin)])
async def read_borrow_stats(services: Services = Depends(get_services)):
    return await services.borrow_service.stats()


# --- GET /{borrow_id} : admin atau pemilik ---
@router.get("/{borrow_id}", response_model=BorrowRecord.Response)
async def read_borrow(
    borrow_id: str = Path(...),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    hydrated = await services.borrow_service.get_borrow(borrow_id, actor)
    return hydrated.to_response(services.clock.now())


# --- PATCH /{borrow_id}/status (admin) ---
@router.patch("/{borrow_id}/status", response_model=BorrowRecord.Response)
async def update_borrow_status(
    borrow_id: str = Path(...),
    update: BorrowRecord.StatusUpdate = Body(...),
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Approve, reject, hand over or return a borrow. Transitions outside the table are rejected with 409."""
    logger.info(f"Admin '{actor.user_id}' requesting status '{update.status.value}' for borrow '{borrow_id}'.")
    record = await services.borrow_service.update_status(borrow_id, actor, update)
    hydrated = await services.borrow_service.hydrate(record)
    return hydrated.to_response(services.clock.now())

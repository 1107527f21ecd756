# lab_inventory/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status as fastapi_status, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from loguru import logger
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from lab_inventory.core import config
from lab_inventory.core.borrowing import allowed_next
from lab_inventory.core.config import setup_logging
from lab_inventory.core.container import Services, build_services
from lab_inventory.core.errors import (
    BorrowError, Conflict, InvalidTransition, NotFound, PermissionDenied, ValidationError
)
from lab_inventory.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from lab_inventory.db.database import close_db, init_db, ping_db
from lab_inventory.middleware.logging import RequestLoggingMiddleware
from lab_inventory.api.v1.api import api_router_v1


def _error_response(status_code: int, exc: BorrowError, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "fail", "detail": str(exc), **extra})


def create_app(services: Optional[Services] = None, run_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Build the FastAPI app. Passing `services` skips MongoDB entirely (tests, demos).
    `run_scheduler` defaults to SCHEDULER_ENABLED.
    """
    use_mongo = services is None
    run_scheduler = config.SCHEDULER_ENABLED if run_scheduler is None else run_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup...")
        if use_mongo:
            await init_db()
            app.state.services = build_services()
        svc: Services = app.state.services
        if run_scheduler:
            svc.scheduler.start()
        yield
        logger.info("Application shutdown...")
        await svc.scheduler.stop()
        await svc.dispatcher.drain(timeout=config.NOTIFY_TIMEOUT_SECONDS)
        if use_mongo:
            close_db()

    app = FastAPI(
        title="Lab Inventory Borrow API",
        description="Borrow lifecycle, availability and reminders for lab equipment.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # --- Error Handling ---
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)

    @app.exception_handler(ValidationError)
    async def borrow_validation_handler(request: Request, exc: ValidationError):
        logger.info(f"Validation failed: {exc}")
        return _error_response(fastapi_status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error_response(fastapi_status.HTTP_404_NOT_FOUND, exc, missing_ids=exc.missing_ids)

    @app.exception_handler(Conflict)
    async def conflict_handler(request: Request, exc: Conflict):
        logger.info(f"Reservation conflict: {exc}")
        return _error_response(fastapi_status.HTTP_409_CONFLICT, exc, conflicting_items=exc.conflicting_items)

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        logger.warning(f"Invalid transition: {exc}")
        return _error_response(
            fastapi_status.HTTP_409_CONFLICT, exc,
            current=exc.current.value, requested=exc.requested.value,
            allowed=[s.value for s in allowed_next(exc.current)],
        )

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied):
        return _error_response(fastapi_status.HTTP_403_FORBIDDEN, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.error(f"Validation Error: {exc.errors()}")
        return JSONResponse(
            status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": "Validation Error", "errors": jsonable_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(f"Unhandled Exception: {exc}")
        return JSONResponse(status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "An internal server error occurred."})

    # --- Middleware ---
    app.add_middleware(RequestLoggingMiddleware)
    app.state.limiter = get_rate_limiter()
    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.include_router(api_router_v1)

    @app.get("/")
    async def read_root():
        return {"message": "Welcome!"}

    @app.get("/ping-mongodb")
    async def ping_mongodb():
        if not use_mongo:
            return {"status": "skipped", "message": "Running without MongoDB."}
        try:
            await ping_db()
            return {"status": "success", "message": "MongoDB connection is healthy."}
        except Exception as e:
            logger.error(f"MongoDB ping failed: {e}")
            raise HTTPException(status_code=503, detail="MongoDB connection failed.")

    return app


def jsonable_errors(exc: RequestValidationError):
    # ctx bisa berisi objek exception yang tidak bisa di-serialize
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


def get_application() -> FastAPI:
    """Factory untuk `uvicorn lab_inventory.main:get_application --factory`."""
    setup_logging()
    return create_app()

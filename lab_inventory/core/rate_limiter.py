# lab_inventory/core/rate_limiter.py
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request

from lab_inventory.core import config

# In-memory storage (cukup untuk satu proses)
limiter = Limiter(key_func=get_remote_address, enabled=config.RATE_LIMIT_ENABLED)

def get_rate_limiter() -> Limiter:
    return limiter

def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}"},
    )

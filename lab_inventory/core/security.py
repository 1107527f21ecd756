# lab_inventory/core/security.py
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from lab_inventory.core import config
from lab_inventory.models.enum import UserRole
from lab_inventory.models.user import Actor

logger = logging.getLogger(__name__)

# Token diterbitkan oleh layanan autentikasi; di sini hanya diverifikasi
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def decode_actor(token: str) -> Actor:
    """Decode a bearer token into the caller's identity. Claims: sub (user id), role."""
    if not config.SECRET_KEY:
        raise JWTError("SECRET_KEY is not configured")
    payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise JWTError("Token has no subject")
    return Actor(user_id=str(user_id), role=UserRole(payload.get("role", UserRole.USER.value)))


async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return decode_actor(token)
    except (JWTError, ValueError) as e:
        logger.warning(f"Token decode failed: {e}")
        raise credentials_exception


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        logger.warning(f"Forbidden: user '{actor.user_id}' with role '{actor.role.value}' attempted an admin action.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to perform this action",
        )
    return actor

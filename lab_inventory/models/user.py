# lab_inventory/models/user.py
from typing import Optional
from pydantic import BaseModel, EmailStr

from .enum import UserRole

class User(BaseModel):
    """Data user yang dibaca core (dimiliki oleh layanan autentikasi)."""
    id: str
    name: str
    email: Optional[EmailStr] = None
    class_name: Optional[str] = None  # field 'class' di sistem lama
    role: UserRole = UserRole.USER

    class Ref(BaseModel):
        id: str
        name: str
        email: Optional[EmailStr] = None
        class_name: Optional[str] = None
        class Config: from_attributes=True


class Actor(BaseModel):
    """Identitas pemanggil yang sudah diverifikasi oleh identity provider."""
    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

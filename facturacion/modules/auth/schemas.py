from pydantic import BaseModel
from typing import Optional
from enum import Enum


class UserRole(str, Enum):
    ADMINISTRATOR = "Administrator"
    SALES = "Sales"
    GUEST = "Guest"


class AuthContext(BaseModel):
    user_id: int
    user_role: Optional[UserRole] = None

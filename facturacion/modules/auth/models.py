from sqlalchemy import Column, Integer, String, Boolean, Enum
from facturacion.database.database import Base
from facturacion.common.mixins import TimestampMixin
import enum


class UserRole(str, enum.Enum):
    ADMINISTRATOR = "Administrator"
    SALES = "Sales"
    GUEST = "Guest"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(150), nullable=False)
    username = Column(String(50), unique=True, nullable=False)
    identity_card = Column(String(11), nullable=True)  # Carnet de identidad
    role = Column(Enum(UserRole), nullable=False, default=UserRole.GUEST)
    is_active = Column(Boolean, default=True)

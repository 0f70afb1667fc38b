from sqlalchemy import Column, Integer, String, ForeignKey, Enum, Date
from sqlalchemy.orm import relationship
from facturacion.database.database import Base
from facturacion.common.mixins import TimestampMixin
import enum


class ContractRole(str, enum.Enum):
    CLIENT = "Client"      # Las facturas descuentan inventario
    SUPPLIER = "Supplier"  # Las facturas suman inventario y generan entradas


class Contract(Base, TimestampMixin):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False)
    counterpart = Column(String(200), nullable=False)  # Entidad con la que se firma
    role = Column(Enum(ContractRole), nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Relationships
    invoices = relationship("Invoice", back_populates="contract")
    authorized_workers = relationship("AuthorizedWorker", back_populates="contract", cascade="all, delete-orphan")

    @property
    def is_client(self) -> bool:
        return self.role == ContractRole.CLIENT

    @property
    def is_supplier(self) -> bool:
        return self.role == ContractRole.SUPPLIER


class AuthorizedWorker(Base, TimestampMixin):
    __tablename__ = "authorized_workers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False)
    full_name = Column(String(150), nullable=False)
    identity_card = Column(String(11), nullable=True)

    # Relationships
    contract = relationship("Contract", back_populates="authorized_workers")

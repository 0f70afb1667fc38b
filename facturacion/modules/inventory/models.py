from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from facturacion.database.database import Base
from facturacion.common.mixins import TimestampMixin


class InventoryEntry(Base, TimestampMixin):
    """Entrada de mercancía; ligada a una factura de proveedor o independiente (con nota)."""
    __tablename__ = "inventory_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    quantity = Column(Numeric(12, 2), nullable=False)
    cost = Column(Numeric(12, 2), nullable=True, default=0)
    note = Column(String(255), nullable=True)
    entry_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    invoice = relationship("Invoice", back_populates="entries")
    contract = relationship("Contract")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_entry_quantity_positive"),
    )


class StockOut(Base, TimestampMixin):
    """Salida de inventario no asociada a una factura (mermas, consumo interno...)."""
    __tablename__ = "stock_outs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    quantity = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=False)
    out_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    product = relationship("Product")
    user = relationship("User")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_out_quantity_positive"),
    )

from facturacion.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum, Text, CheckConstraint
from sqlalchemy.orm import relationship
from facturacion.common.mixins import TimestampMixin
import enum


class InvoiceStatus(str, enum.Enum):
    INVOICED = "Invoiced"         # Facturado
    NOT_INVOICED = "NotInvoiced"  # No facturado
    CANCELLED = "Cancelled"       # Cancelado


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # References
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    authorized_worker_id = Column(Integer, ForeignKey("authorized_workers.id"), nullable=True)
    # Usuario que firma la factura; no cambia después de crearse
    signed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Invoice data
    consecutive_number = Column(Integer, nullable=False, index=True)
    issue_date = Column(DateTime, nullable=False, index=True)
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.NOT_INVOICED)
    note = Column(Text, nullable=True)
    additional_charge = Column(Numeric(12, 2), nullable=True)

    # Relationships
    contract = relationship("Contract", back_populates="invoices")
    authorized_worker = relationship("AuthorizedWorker")
    signed_by = relationship("User")
    services = relationship("Service", back_populates="invoice", cascade="all, delete-orphan")
    product_lines = relationship("InvoiceProduct", back_populates="invoice", cascade="all, delete-orphan")
    entries = relationship("InventoryEntry", back_populates="invoice", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("consecutive_number > 0", name="ck_invoice_consecutive_positive"),
        CheckConstraint("additional_charge IS NULL OR additional_charge >= 0", name="ck_invoice_charge_non_negative"),
    )

    @property
    def contract_role(self):
        return self.contract.role.value if self.contract else None


class Service(Base, TimestampMixin):
    """Línea de servicio de una factura."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)

    description = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_amount = Column(Numeric(12, 2), nullable=False, default=0)  # Importe unitario
    unit_of_measure = Column(String(30), nullable=False)

    # Relationships
    invoice = relationship("Invoice", back_populates="services")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_service_quantity_min"),
        CheckConstraint("unit_amount >= 0", name="ck_service_amount_non_negative"),
    )


class InvoiceProduct(Base, TimestampMixin):
    """
    Línea de producto de una factura.

    sale_price y sale_cost son una foto del producto al facturar, para que
    cambios posteriores de precio/costo no alteren facturas históricas.
    """
    __tablename__ = "invoice_products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    quantity = Column(Numeric(12, 2), nullable=False, default=0)
    sale_price = Column(Numeric(12, 2), nullable=False, default=0)
    sale_cost = Column(Numeric(12, 2), nullable=False, default=0)

    # Relationships
    invoice = relationship("Invoice", back_populates="product_lines")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_invoice_product_quantity_non_negative"),
    )

    @property
    def product_name(self):
        return self.product.name if self.product else None

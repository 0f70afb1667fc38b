from sqlalchemy import Column, Integer, String, Numeric, CheckConstraint
from facturacion.database.database import Base
from facturacion.common.mixins import TimestampMixin


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    unit_of_measure = Column(String(30), nullable=False, default="u")
    product_type = Column(String(50), nullable=False, default="Carne")
    price = Column(Numeric(12, 2), nullable=False, default=0)  # Precio de venta
    cost = Column(Numeric(12, 2), nullable=False, default=0)   # Costo
    # Solo se modifica a través del InventoryLedger
    on_hand_quantity = Column(Numeric(12, 2), nullable=False, default=0)
    note = Column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint("on_hand_quantity >= 0", name="ck_product_on_hand_non_negative"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint("cost >= 0", name="ck_product_cost_non_negative"),
    )

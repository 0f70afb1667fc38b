"""
Libro de existencias (InventoryLedger).

Único punto por el que se modifica Product.on_hand_quantity. Cada fila de
producto se bloquea con SELECT ... FOR UPDATE dentro de la transacción de
la sesión antes de leerla y escribirla, y los bloqueos se toman en orden
ascendente de id para que dos transacciones que tocan los mismos productos
no se bloqueen mutuamente.

El ledger no hace commit: la transacción pertenece al servicio que lo usa.
"""
from decimal import Decimal
from typing import Dict, Iterable, Optional
import logging

from sqlalchemy.orm import Session

from facturacion.common.exceptions import DomainValidationError, InsufficientStockError, ReferenceNotFoundError
from facturacion.common.utils import MAX_AMOUNT, round2
from facturacion.modules.products.models import Product

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Incrementos/decrementos atómicos de existencias con invariante de no negatividad."""

    def __init__(self, db: Session):
        self.db = db
        self._locked: Dict[int, Product] = {}

    def lock(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """
        Bloquear las filas de los productos indicados en orden canónico.

        Los ids ya bloqueados en esta transacción no se vuelven a consultar.
        """
        product_ids = [int(pid) for pid in product_ids]
        pending = sorted(set(product_ids) - set(self._locked))
        for product_id in pending:
            product = (
                self.db.query(Product)
                .filter(Product.id == product_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
            if product is None:
                raise ReferenceNotFoundError(f"El producto con ID {product_id} no existe")
            self._locked[product_id] = product
        return {pid: self._locked[pid] for pid in product_ids}

    def get(self, product_id: int) -> Product:
        return self.lock([product_id])[product_id]

    def increment(self, product_id: int, amount) -> Decimal:
        amount = self._validate_amount(amount)
        product = self.get(product_id)
        old_quantity = round2(product.on_hand_quantity)
        new_quantity = round2(old_quantity + amount)
        if new_quantity > MAX_AMOUNT:
            raise DomainValidationError(
                f"La existencia del producto {product.name} superaría el máximo permitido ({MAX_AMOUNT})"
            )
        product.on_hand_quantity = new_quantity
        logger.debug(f"Existencia producto {product_id}: {old_quantity} -> {new_quantity}")
        return new_quantity

    def decrement(self, product_id: int, amount, context: Optional[str] = None) -> Decimal:
        amount = self._validate_amount(amount)
        product = self.get(product_id)
        old_quantity = round2(product.on_hand_quantity)
        new_quantity = round2(old_quantity - amount)
        if new_quantity < 0:
            raise InsufficientStockError.for_product(product, amount, context)
        product.on_hand_quantity = new_quantity
        logger.debug(f"Existencia producto {product_id}: {old_quantity} -> {new_quantity}")
        return new_quantity

    def apply(self, product_id: int, delta, context: Optional[str] = None) -> Decimal:
        """Aplicar un movimiento con signo: positivo suma, negativo resta."""
        delta = round2(delta)
        if delta < 0:
            return self.decrement(product_id, -delta, context)
        return self.increment(product_id, delta)

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        amount = round2(amount)
        if amount < 0:
            raise DomainValidationError(f"La cantidad del movimiento no puede ser negativa: {amount}")
        return amount

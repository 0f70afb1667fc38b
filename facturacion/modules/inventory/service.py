from datetime import datetime
from typing import Optional
import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session

from facturacion.common.exceptions import (
    DomainValidationError, ErrorCollector, InternalError, NotFoundError, ReferenceNotFoundError
)
from facturacion.common.utils import round2
from facturacion.modules.contracts.models import Contract
from facturacion.modules.inventory.ledger import InventoryLedger
from facturacion.modules.inventory.models import InventoryEntry, StockOut
from facturacion.modules.inventory.schemas import (
    EntryCreate, EntryUpdate, EntryOut, EntryFilters, EntryList,
    StockOutCreate, StockOutUpdate, StockOutOut, StockOutList
)
from facturacion.modules.invoices.models import Invoice

logger = logging.getLogger(__name__)


class EntryService:
    """Service for standalone inventory entries (goods received)."""

    def __init__(self, db: Session):
        self.db = db

    def _validate(self, invoice_id: Optional[int], contract_id: Optional[int], note: Optional[str]) -> None:
        """
        An entry is either tied to an invoice and its contract (both ids) or
        standalone, in which case it needs a note explaining its origin.
        """
        errors = ErrorCollector()
        if (invoice_id is None) != (contract_id is None):
            errors.add("La factura y el contrato deben indicarse juntos o no indicarse")
        elif invoice_id is None and not (note or "").strip():
            errors.add("La nota es obligatoria cuando la entrada no está ligada a una factura")

        if invoice_id is not None and not self.db.query(Invoice).filter(Invoice.id == invoice_id).first():
            errors.add(f"La factura con ID {invoice_id} no existe", ReferenceNotFoundError)
        if contract_id is not None and not self.db.query(Contract).filter(Contract.id == contract_id).first():
            errors.add(f"El contrato con ID {contract_id} no existe", ReferenceNotFoundError)
        errors.raise_if_any()

    def create_entry(self, entry_data: EntryCreate) -> InventoryEntry:
        """Register an entry and add its quantity to the product stock."""
        self._validate(entry_data.invoice_id, entry_data.contract_id, entry_data.note)
        try:
            ledger = InventoryLedger(self.db)
            ledger.increment(entry_data.product_id, entry_data.quantity)

            entry = InventoryEntry(
                product_id=entry_data.product_id,
                invoice_id=entry_data.invoice_id,
                contract_id=entry_data.contract_id,
                quantity=round2(entry_data.quantity),
                cost=round2(entry_data.cost) if entry_data.cost is not None else None,
                note=entry_data.note,
                entry_date=entry_data.entry_date or datetime.utcnow(),
            )
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)
            logger.info(f"Entrada {entry.id} creada: producto {entry.product_id} +{entry.quantity}")
            return entry
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando entrada: {str(e)}", exc_info=True)
            raise InternalError("Error interno al crear la entrada")

    def get_entry(self, entry_id: int) -> InventoryEntry:
        entry = self.db.query(InventoryEntry).filter(InventoryEntry.id == entry_id).first()
        if not entry:
            raise NotFoundError(f"La entrada con ID {entry_id} no existe")
        return entry

    def get_entries(self, filters: EntryFilters, limit: int = 10, offset: int = 0) -> EntryList:
        """List entries, newest first."""
        query = self.db.query(InventoryEntry)
        if filters.product_id is not None:
            query = query.filter(InventoryEntry.product_id == filters.product_id)
        if filters.contract_id is not None:
            query = query.filter(InventoryEntry.contract_id == filters.contract_id)
        if filters.invoice_id is not None:
            query = query.filter(InventoryEntry.invoice_id == filters.invoice_id)
        if filters.date_from is not None:
            query = query.filter(InventoryEntry.entry_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(InventoryEntry.entry_date <= filters.date_to)

        total = query.count()
        entries = (
            query.order_by(InventoryEntry.entry_date.desc(), InventoryEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return EntryList(
            entries=[EntryOut.model_validate(entry) for entry in entries],
            total=total, limit=limit, offset=offset,
        )

    def update_entry(self, entry_id: int, entry_update: EntryUpdate) -> InventoryEntry:
        """
        Update an entry, moving stock by the difference.

        When the product changes, the old product loses the old quantity and
        the new product receives the new one.
        """
        entry = self.get_entry(entry_id)
        fields = entry_update.model_fields_set
        if ("product_id" in fields and entry_update.product_id is None) or \
                ("quantity" in fields and entry_update.quantity is None):
            raise DomainValidationError("El producto y la cantidad no pueden ser nulos")

        invoice_id = entry_update.invoice_id if "invoice_id" in fields else entry.invoice_id
        contract_id = entry_update.contract_id if "contract_id" in fields else entry.contract_id
        note = entry_update.note if "note" in fields else entry.note
        self._validate(invoice_id, contract_id, note)

        old_product_id = entry.product_id
        old_quantity = round2(entry.quantity)
        new_product_id = entry_update.product_id or old_product_id
        new_quantity = round2(entry_update.quantity) if entry_update.quantity is not None else old_quantity

        try:
            ledger = InventoryLedger(self.db)
            ledger.lock([old_product_id, new_product_id])
            context = f"Entrada {entry.id}"
            if new_product_id != old_product_id:
                ledger.decrement(old_product_id, old_quantity, context=context)
                ledger.increment(new_product_id, new_quantity)
            else:
                ledger.apply(old_product_id, new_quantity - old_quantity, context=context)

            entry.product_id = new_product_id
            entry.quantity = new_quantity
            entry.invoice_id = invoice_id
            entry.contract_id = contract_id
            entry.note = note
            if "cost" in fields:
                entry.cost = round2(entry_update.cost) if entry_update.cost is not None else None
            if entry_update.entry_date is not None:
                entry.entry_date = entry_update.entry_date

            self.db.commit()
            self.db.refresh(entry)
            logger.info(f"Entrada {entry.id} actualizada")
            return entry
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando entrada {entry_id}: {str(e)}", exc_info=True)
            raise InternalError("Error interno al actualizar la entrada")

    def delete_entry(self, entry_id: int) -> bool:
        """Delete an entry and take its quantity back out of stock."""
        entry = self.db.query(InventoryEntry).filter(InventoryEntry.id == entry_id).first()
        if not entry:
            return False
        try:
            ledger = InventoryLedger(self.db)
            ledger.decrement(entry.product_id, entry.quantity, context=f"Entrada {entry.id}")
            self.db.delete(entry)
            self.db.commit()
            logger.info(f"Entrada {entry_id} eliminada")
            return True
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error eliminando entrada {entry_id}: {str(e)}", exc_info=True)
            raise InternalError("Error interno al eliminar la entrada")


class StockOutService:
    """Service for stock-outs not tied to an invoice (waste, internal use)."""

    def __init__(self, db: Session):
        self.db = db

    def create_stock_out(self, data: StockOutCreate, user_id: int) -> StockOut:
        if not data.description.strip():
            raise DomainValidationError("La descripción es obligatoria")
        try:
            ledger = InventoryLedger(self.db)
            ledger.decrement(data.product_id, data.quantity)

            stock_out = StockOut(
                product_id=data.product_id,
                user_id=user_id,
                quantity=round2(data.quantity),
                description=data.description.strip(),
                out_date=data.out_date or datetime.utcnow(),
            )
            self.db.add(stock_out)
            self.db.commit()
            self.db.refresh(stock_out)
            logger.info(f"Salida {stock_out.id} creada: producto {stock_out.product_id} -{stock_out.quantity}")
            return stock_out
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando salida: {str(e)}", exc_info=True)
            raise InternalError("Error interno al crear la salida")

    def get_stock_out(self, stock_out_id: int) -> StockOut:
        stock_out = self.db.query(StockOut).filter(StockOut.id == stock_out_id).first()
        if not stock_out:
            raise NotFoundError(f"La salida con ID {stock_out_id} no existe")
        return stock_out

    def get_stock_outs(self, product_id: Optional[int] = None, limit: int = 10, offset: int = 0) -> StockOutList:
        query = self.db.query(StockOut)
        if product_id is not None:
            query = query.filter(StockOut.product_id == product_id)
        total = query.count()
        stock_outs = (
            query.order_by(StockOut.out_date.desc(), StockOut.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return StockOutList(
            stock_outs=[StockOutOut.model_validate(stock_out) for stock_out in stock_outs],
            total=total, limit=limit, offset=offset,
        )

    def update_stock_out(self, stock_out_id: int, data: StockOutUpdate) -> StockOut:
        """Return the old quantity to the old product, then take the new quantity from the new one."""
        stock_out = self.get_stock_out(stock_out_id)
        if data.description is not None and not data.description.strip():
            raise DomainValidationError("La descripción es obligatoria")

        old_product_id = stock_out.product_id
        old_quantity = round2(stock_out.quantity)
        new_product_id = data.product_id or old_product_id
        new_quantity = round2(data.quantity) if data.quantity is not None else old_quantity

        try:
            ledger = InventoryLedger(self.db)
            ledger.lock([old_product_id, new_product_id])
            ledger.increment(old_product_id, old_quantity)
            ledger.decrement(new_product_id, new_quantity, context=f"Salida {stock_out.id}")

            stock_out.product_id = new_product_id
            stock_out.quantity = new_quantity
            if data.description is not None:
                stock_out.description = data.description.strip()
            if data.out_date is not None:
                stock_out.out_date = data.out_date

            self.db.commit()
            self.db.refresh(stock_out)
            logger.info(f"Salida {stock_out.id} actualizada")
            return stock_out
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando salida {stock_out_id}: {str(e)}", exc_info=True)
            raise InternalError("Error interno al actualizar la salida")

    def delete_stock_out(self, stock_out_id: int) -> bool:
        stock_out = self.db.query(StockOut).filter(StockOut.id == stock_out_id).first()
        if not stock_out:
            return False
        try:
            ledger = InventoryLedger(self.db)
            ledger.increment(stock_out.product_id, stock_out.quantity)
            self.db.delete(stock_out)
            self.db.commit()
            logger.info(f"Salida {stock_out_id} eliminada")
            return True
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error eliminando salida {stock_out_id}: {str(e)}", exc_info=True)
            raise InternalError("Error interno al eliminar la salida")

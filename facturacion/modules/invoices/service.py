"""
Servicio de facturas: creación, actualización y eliminación con efecto en inventario.

Cada operación es una única transacción:
- Contrato de cliente: las líneas de producto descuentan existencias.
- Contrato de proveedor: las líneas de producto suman existencias y
  generan una entrada de inventario por línea.

La actualización revierte primero el efecto de las líneas anteriores (con
el tipo de contrato original) y luego aplica las nuevas (con el tipo de
contrato nuevo). La eliminación revierte el efecto y borra la factura con
todas sus líneas y entradas.

Toda la validación se hace antes de escribir; cualquier error dentro de la
transacción provoca rollback completo.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from facturacion.common.exceptions import (
    ErrorCollector, FacturacionError, ImmutableFieldError,
    InternalError, NotFoundError, ReferenceNotFoundError
)
from facturacion.common.utils import round2, to_decimal
from facturacion.modules.auth.models import User
from facturacion.modules.contracts.models import Contract, AuthorizedWorker, ContractRole
from facturacion.modules.inventory.ledger import InventoryLedger
from facturacion.modules.inventory.models import InventoryEntry
from facturacion.modules.invoices.builder import InvoiceAggregateBuilder
from facturacion.modules.invoices.models import Invoice, InvoiceProduct, InvoiceStatus
from facturacion.modules.invoices.numbering import ConsecutiveNumberValidator
from facturacion.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceDetail, InvoiceFilters, InvoiceList, InvoiceSums, NextConsecutive
)

logger = logging.getLogger(__name__)

# Campos escalares que no admiten null en una actualización
REQUIRED_FIELDS = ("consecutive_number", "issue_date", "contract_id", "status")


class InvoiceService:

    def __init__(self, db: Session):
        self.db = db
        self.numbering = ConsecutiveNumberValidator(db)
        self.builder = InvoiceAggregateBuilder(db)

    # ===== VALIDATION =====

    def _collect(self, errors: ErrorCollector, check, *args, **kwargs) -> None:
        """Ejecutar una validación que lanza y guardar sus mensajes en el colector."""
        try:
            check(*args, **kwargs)
        except FacturacionError as e:
            for message in e.errors:
                errors.add(message, type(e))

    def _resolve_contract(self, contract_id: int, errors: ErrorCollector) -> Optional[Contract]:
        contract = self.db.query(Contract).filter(Contract.id == contract_id).first()
        if not contract:
            errors.add(f"El contrato con ID {contract_id} no existe", ReferenceNotFoundError)
        return contract

    def _check_worker(self, worker_id: int, errors: ErrorCollector) -> None:
        if not self.db.query(AuthorizedWorker).filter(AuthorizedWorker.id == worker_id).first():
            errors.add(f"El trabajador autorizado con ID {worker_id} no existe", ReferenceNotFoundError)

    def _check_user(self, user_id: int, errors: ErrorCollector) -> None:
        if not self.db.query(User).filter(User.id == user_id).first():
            errors.add(f"El usuario firmante con ID {user_id} no existe", ReferenceNotFoundError)

    def _check_numbering(
        self,
        errors: ErrorCollector,
        consecutive_number: int,
        issue_date: datetime,
        contract: Contract,
        exclude_invoice_id: Optional[int] = None,
    ) -> None:
        self._collect(errors, self.numbering.validate_unique,
                      consecutive_number, issue_date, contract.id, exclude_invoice_id)
        self._collect(errors, self.numbering.validate_order,
                      consecutive_number, issue_date, contract.id, exclude_invoice_id)

    def _reserve_consecutive(
        self,
        consecutive_number: int,
        issue_date: datetime,
        contract: Contract,
        exclude_invoice_id: Optional[int] = None,
    ) -> None:
        """Bloquear el año y repetir la comprobación de unicidad dentro de la transacción."""
        if not contract.is_client:
            return
        self.numbering.lock_year(issue_date.year)
        self.numbering.validate_unique(consecutive_number, issue_date, contract.id, exclude_invoice_id)

    # ===== INVENTORY EFFECTS =====

    @staticmethod
    def _lock_products(ledger: InventoryLedger, *line_groups) -> None:
        product_ids = {line.product_id for lines in line_groups for line in lines}
        ledger.lock(product_ids)

    @staticmethod
    def _apply_lines(ledger: InventoryLedger, contract: Contract, lines: List[InvoiceProduct]) -> None:
        """Cliente descuenta, proveedor suma."""
        for index, line in enumerate(lines):
            if contract.is_client:
                ledger.decrement(line.product_id, line.quantity, context=f"products[{index}]")
            else:
                ledger.increment(line.product_id, line.quantity)

    @staticmethod
    def _reverse_lines(ledger: InventoryLedger, contract: Contract, lines: List[InvoiceProduct],
                       invoice: Invoice) -> None:
        for line in lines:
            if contract.is_client:
                ledger.increment(line.product_id, line.quantity)
            else:
                ledger.decrement(
                    line.product_id, line.quantity,
                    context=f"Reversión de la factura {invoice.consecutive_number}"
                )

    @staticmethod
    def _build_entries(contract: Contract, lines: List[InvoiceProduct]) -> List[InventoryEntry]:
        now = datetime.utcnow()
        return [
            InventoryEntry(
                contract_id=contract.id,
                product_id=line.product_id,
                quantity=line.quantity,
                cost=line.sale_cost,
                entry_date=now,
            )
            for line in lines
            if to_decimal(line.quantity) > 0
        ]

    @staticmethod
    def _stock_credits(contract: Contract, lines: List[InvoiceProduct]) -> Dict[int, Decimal]:
        """Existencias que devuelve la reversión de las líneas de una factura de cliente."""
        credits: Dict[int, Decimal] = {}
        if contract.is_client:
            for line in lines:
                credits[line.product_id] = credits.get(line.product_id, Decimal("0")) + round2(line.quantity)
        return credits

    # ===== CREATE =====

    def create_invoice(self, invoice_data: InvoiceCreate, user_id: Optional[int] = None) -> Invoice:
        """
        Crear una factura con sus líneas.

        El usuario firmante por defecto es el usuario autenticado.
        """
        signed_by_id = invoice_data.signed_by_id if invoice_data.signed_by_id is not None else user_id

        errors = ErrorCollector()
        contract = self._resolve_contract(invoice_data.contract_id, errors)
        if invoice_data.authorized_worker_id is not None:
            self._check_worker(invoice_data.authorized_worker_id, errors)
        if signed_by_id is not None:
            self._check_user(signed_by_id, errors)
        if contract:
            self._check_numbering(errors, invoice_data.consecutive_number, invoice_data.issue_date, contract)
        self.builder.validate_lines(invoice_data.services, invoice_data.products, contract, errors)
        if errors:
            logger.info(f"Factura {invoice_data.consecutive_number} rechazada: {errors.messages}")
        errors.raise_if_any()

        try:
            self._reserve_consecutive(invoice_data.consecutive_number, invoice_data.issue_date, contract)

            invoice = Invoice(
                contract=contract,
                authorized_worker_id=invoice_data.authorized_worker_id,
                signed_by_id=signed_by_id,
                consecutive_number=invoice_data.consecutive_number,
                issue_date=invoice_data.issue_date,
                status=invoice_data.status,
                note=invoice_data.note,
                additional_charge=(
                    round2(invoice_data.additional_charge)
                    if invoice_data.additional_charge is not None else None
                ),
            )
            self.db.add(invoice)

            if invoice_data.services:
                invoice.services.extend(self.builder.build_services(invoice_data.services))

            if invoice_data.products:
                ledger = InventoryLedger(self.db)
                catalog = ledger.lock(line.product_id for line in invoice_data.products)
                lines = self.builder.build_product_lines(invoice_data.products, contract, catalog)
                invoice.product_lines.extend(lines)
                self._apply_lines(ledger, contract, lines)
                logger.info(f"Inventario aplicado para {len(lines)} líneas ({contract.role.value})")

                if contract.is_supplier:
                    entries = self._build_entries(contract, lines)
                    invoice.entries.extend(entries)
                    logger.info(f"{len(entries)} entradas de inventario creadas")

            self.db.commit()
            self.db.refresh(invoice)
            logger.info(f"Factura {invoice.consecutive_number} creada (ID {invoice.id})")
            return invoice

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando factura: {str(e)}", exc_info=True)
            raise InternalError("Error interno al crear la factura")

    # ===== UPDATE =====

    def update_invoice(self, invoice_id: int, invoice_update: InvoiceUpdate) -> Invoice:
        """
        Actualizar una factura.

        Solo se aplican los campos enviados. Si se envían `services` o
        `products`, reemplazan por completo las líneas existentes (y como
        una factura no puede tener ambos tipos, enviar uno elimina el otro).
        """
        invoice = self.get_invoice_by_id(invoice_id)
        fields = invoice_update.model_fields_set
        errors = ErrorCollector()

        if "signed_by_id" in fields and invoice_update.signed_by_id != invoice.signed_by_id:
            errors.add("El usuario firmante no puede modificarse después de crear la factura", ImmutableFieldError)

        for name in REQUIRED_FIELDS:
            if name in fields and getattr(invoice_update, name) is None:
                errors.add(f"El campo {name} no puede ser nulo")

        original_contract = invoice.contract
        new_contract = original_contract
        contract_changed = False
        if invoice_update.contract_id is not None and invoice_update.contract_id != invoice.contract_id:
            new_contract = self._resolve_contract(invoice_update.contract_id, errors)
            contract_changed = True

        if "authorized_worker_id" in fields and invoice_update.authorized_worker_id is not None:
            self._check_worker(invoice_update.authorized_worker_id, errors)

        consecutive_number = invoice_update.consecutive_number or invoice.consecutive_number
        issue_date = invoice_update.issue_date or invoice.issue_date
        numbering_changed = (
            consecutive_number != invoice.consecutive_number
            or issue_date != invoice.issue_date
            or contract_changed
        )
        if new_contract and numbering_changed:
            self._check_numbering(errors, consecutive_number, issue_date, new_contract, invoice.id)

        services = invoice_update.services if "services" in fields else None
        products = invoice_update.products if "products" in fields else None
        old_lines = list(invoice.product_lines)
        self.builder.validate_lines(
            services, products, new_contract, errors,
            stock_credits=self._stock_credits(original_contract, old_lines),
        )
        if errors:
            logger.info(f"Actualización de factura {invoice_id} rechazada: {errors.messages}")
        errors.raise_if_any()

        # Enviar servicios elimina las líneas de producto y viceversa
        replace_products = products is not None or (services is not None and bool(old_lines))
        reapply_products = not replace_products and contract_changed and bool(old_lines)

        try:
            if numbering_changed:
                self._reserve_consecutive(consecutive_number, issue_date, new_contract, invoice.id)

            ledger = InventoryLedger(self.db)
            if replace_products or reapply_products:
                self._lock_products(ledger, old_lines, products or [])
                self._reverse_lines(ledger, original_contract, old_lines, invoice)
                logger.info(f"Inventario revertido para {len(old_lines)} líneas de la factura {invoice.id}")
                if original_contract.is_supplier:
                    invoice.entries.clear()
                    logger.info(f"Entradas de inventario de la factura {invoice.id} eliminadas")

            if replace_products:
                invoice.product_lines.clear()
                self.db.flush()
                new_lines = []
                if products:
                    catalog = ledger.lock(line.product_id for line in products)
                    new_lines = self.builder.build_product_lines(products, new_contract, catalog)
                    invoice.product_lines.extend(new_lines)
            elif reapply_products:
                # Mismas líneas y precios capturados, con el tipo del contrato nuevo
                new_lines = old_lines
            else:
                new_lines = []

            if new_lines:
                self._apply_lines(ledger, new_contract, new_lines)
                logger.info(f"Inventario aplicado para {len(new_lines)} líneas ({new_contract.role.value})")
                if new_contract.is_supplier:
                    entries = self._build_entries(new_contract, new_lines)
                    invoice.entries.extend(entries)
                    logger.info(f"{len(entries)} entradas de inventario creadas")

            if services is not None or products is not None:
                invoice.services.clear()
                self.db.flush()
                if services:
                    invoice.services.extend(self.builder.build_services(services))

            if contract_changed:
                invoice.contract = new_contract
            # Los nulos en campos obligatorios ya se rechazaron arriba
            for name in ("consecutive_number", "issue_date", "note", "authorized_worker_id"):
                if name in fields:
                    setattr(invoice, name, getattr(invoice_update, name))
            if invoice_update.status is not None:
                invoice.status = invoice_update.status
            if "additional_charge" in fields:
                charge = invoice_update.additional_charge
                invoice.additional_charge = round2(charge) if charge is not None else None

            self.db.commit()
            self.db.refresh(invoice)
            logger.info(f"Factura {invoice.consecutive_number} actualizada (ID {invoice.id})")
            return invoice

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando factura {invoice_id}: {str(e)}", exc_info=True)
            raise InternalError("Error interno al actualizar la factura")

    # ===== DELETE =====

    def delete_invoice(self, invoice_id: int) -> bool:
        """
        Eliminar una factura revirtiendo su efecto en inventario.

        Si la reversión de una factura de proveedor dejaría existencias
        negativas (la mercancía ya se vendió), no se elimina nada.
        """
        invoice = self.get_invoice_by_id(invoice_id)
        try:
            lines = list(invoice.product_lines)
            if lines:
                ledger = InventoryLedger(self.db)
                self._lock_products(ledger, lines)
                self._reverse_lines(ledger, invoice.contract, lines, invoice)
                logger.info(f"Inventario revertido para {len(lines)} líneas de la factura {invoice.id}")

            # Borrado explícito de las dependencias antes que la factura
            invoice.entries.clear()
            invoice.product_lines.clear()
            invoice.services.clear()
            self.db.flush()
            self.db.delete(invoice)

            self.db.commit()
            logger.info(f"Factura {invoice.consecutive_number} eliminada (ID {invoice_id})")
            return True

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error eliminando factura {invoice_id}: {str(e)}", exc_info=True)
            raise InternalError("Error interno al eliminar la factura")

    # ===== QUERIES =====

    def get_invoice_by_id(self, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError(f"La factura con ID {invoice_id} no existe")
        return invoice

    def to_detail(self, invoice: Invoice) -> InvoiceDetail:
        """Factura con líneas, entradas y totales calculados."""
        detail = InvoiceDetail.model_validate(invoice)
        detail.totals = self.builder.compute_totals(invoice)
        detail.total_with_charge = round2(
            detail.totals.grand_total + to_decimal(invoice.additional_charge)
        )
        return detail

    def get_invoice_detail(self, invoice_id: int) -> InvoiceDetail:
        return self.to_detail(self.get_invoice_by_id(invoice_id))

    def _filtered_query(self, filters: InvoiceFilters):
        query = self.db.query(Invoice)
        if filters.contract_id is not None:
            query = query.filter(Invoice.contract_id == filters.contract_id)
        if filters.authorized_worker_id is not None:
            query = query.filter(Invoice.authorized_worker_id == filters.authorized_worker_id)
        if filters.signed_by_id is not None:
            query = query.filter(Invoice.signed_by_id == filters.signed_by_id)
        if filters.consecutive_number is not None:
            query = query.filter(Invoice.consecutive_number == filters.consecutive_number)
        if filters.status is not None:
            query = query.filter(Invoice.status == filters.status)
        if filters.date_from is not None:
            query = query.filter(Invoice.issue_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(Invoice.issue_date <= filters.date_to)
        return query

    def get_invoices(self, filters: InvoiceFilters, limit: int = 10, offset: int = 0) -> InvoiceList:
        """
        Listar facturas (más recientes primero) con las sumas del conjunto filtrado.
        """
        query = self._filtered_query(filters)
        total = query.count()
        invoices = (
            query.options(
                selectinload(Invoice.contract),
                selectinload(Invoice.services),
                selectinload(Invoice.product_lines),
            )
            .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return InvoiceList(
            invoices=[self.to_detail(invoice) for invoice in invoices],
            total=total,
            limit=limit,
            offset=offset,
            sums=self.calculate_sums(filters),
        )

    def calculate_sums(self, filters: InvoiceFilters) -> InvoiceSums:
        """Totales de servicios y productos por tipo de contrato, y solo facturados."""
        invoices = (
            self._filtered_query(filters)
            .options(
                selectinload(Invoice.contract),
                selectinload(Invoice.services),
                selectinload(Invoice.product_lines),
            )
            .all()
        )
        acc: Dict[Tuple[str, str, bool], Decimal] = {}
        for invoice in invoices:
            totals = self.builder.compute_totals(invoice)
            side = "clients" if invoice.contract.role == ContractRole.CLIENT else "suppliers"
            invoiced = invoice.status == InvoiceStatus.INVOICED
            for kind, amount in (("services", totals.service_total), ("products", totals.product_total)):
                for only_invoiced in (False, True):
                    if only_invoiced and not invoiced:
                        continue
                    key = (kind, side, only_invoiced)
                    acc[key] = acc.get(key, Decimal("0")) + amount

        values = {}
        for (kind, side, only_invoiced), amount in acc.items():
            name = f"{kind}_{side}_invoiced" if only_invoiced else f"{kind}_{side}"
            values[name] = round2(amount)
        return InvoiceSums(**values)

    def get_next_consecutive(self, year: int) -> NextConsecutive:
        next_number = self.numbering.next_available(year)
        return NextConsecutive(
            year=year,
            next_consecutive=next_number,
            message=f"El siguiente número consecutivo disponible para {year} es {next_number}",
        )

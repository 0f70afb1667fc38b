"""
Validación de números consecutivos de facturas.

Reglas (solo para contratos de cliente):
- Dentro de un año calendario, un número consecutivo no puede repetirse
  entre facturas de contratos de cliente.
- La fecha de la factura N debe ser estrictamente posterior a la de la
  factura N-1 del mismo año, si esta existe.

Las facturas de proveedor están exentas: sus consecutivos los asigna el
proveedor y pueden repetirse entre contratos.
"""
from datetime import datetime
from typing import Optional, Tuple
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from facturacion.common.exceptions import (
    DomainValidationError, DuplicateConsecutiveError, OutOfOrderDateError, ReferenceNotFoundError
)
from facturacion.common.utils import parse_consecutive
from facturacion.modules.contracts.models import Contract, ContractRole
from facturacion.modules.invoices.models import Invoice

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100
# Primera clave de pg_advisory_xact_lock; la segunda es el año
CONSECUTIVE_LOCK_KEY = 7301


def year_bounds(year: int) -> Tuple[datetime, datetime]:
    """Rango semiabierto [1 de enero, 1 de enero del año siguiente)."""
    return datetime(year, 1, 1), datetime(year + 1, 1, 1)


class ConsecutiveNumberValidator:

    def __init__(self, db: Session):
        self.db = db

    def _get_contract(self, contract_id: int) -> Contract:
        contract = self.db.query(Contract).filter(Contract.id == contract_id).first()
        if not contract:
            raise ReferenceNotFoundError(f"El contrato con ID {contract_id} no existe")
        return contract

    def _client_invoices(self, consecutive_number: int, year: int, exclude_invoice_id: Optional[int] = None):
        start, end = year_bounds(year)
        query = (
            self.db.query(Invoice)
            .join(Contract, Invoice.contract_id == Contract.id)
            .filter(
                Contract.role == ContractRole.CLIENT,
                Invoice.consecutive_number == consecutive_number,
                Invoice.issue_date >= start,
                Invoice.issue_date < end,
            )
        )
        if exclude_invoice_id is not None:
            query = query.filter(Invoice.id != exclude_invoice_id)
        return query

    def lock_year(self, year: int) -> None:
        """
        Serializar la asignación de consecutivos de un año entre transacciones.

        En PostgreSQL toma un advisory lock que se libera con el commit o el
        rollback de la sesión. Otros motores no lo soportan y se omite.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return
        self.db.execute(select(func.pg_advisory_xact_lock(CONSECUTIVE_LOCK_KEY, year)))
        logger.debug(f"Bloqueo de consecutivos del año {year} adquirido")

    def validate_unique(
        self,
        consecutive_number: int,
        issue_date: datetime,
        contract_id: int,
        exclude_invoice_id: Optional[int] = None,
    ) -> None:
        contract = self._get_contract(contract_id)
        if not contract.is_client:
            return

        duplicate = self._client_invoices(consecutive_number, issue_date.year, exclude_invoice_id).first()
        if duplicate:
            raise DuplicateConsecutiveError(
                f"Ya existe una factura de cliente con el número consecutivo {consecutive_number} "
                f"en el año {issue_date.year}"
            )

    def validate_order(
        self,
        consecutive_number: int,
        issue_date: datetime,
        contract_id: int,
        exclude_invoice_id: Optional[int] = None,
    ) -> None:
        """
        Verificar que la fecha sea posterior a la de la factura anterior.

        Si la factura N-1 no existe todavía no hay nada que comparar: se
        toleran huecos en la numeración.
        """
        if consecutive_number <= 1:
            return
        contract = self._get_contract(contract_id)
        if not contract.is_client:
            return

        previous = (
            self._client_invoices(consecutive_number - 1, issue_date.year, exclude_invoice_id)
            .order_by(Invoice.issue_date.desc())
            .first()
        )
        if previous and not issue_date > previous.issue_date:
            raise OutOfOrderDateError(
                f"La fecha de la factura {consecutive_number} debe ser posterior a la de la factura "
                f"{previous.consecutive_number} ({previous.issue_date:%Y-%m-%d %H:%M})"
            )

    def next_available(self, year: int) -> int:
        """
        Siguiente consecutivo sugerido para el año: máximo existente + 1.

        Considera todas las facturas del año, de cliente y de proveedor. Es
        solo una sugerencia: la unicidad se vuelve a comprobar al guardar.
        """
        if not isinstance(year, int) or year < MIN_YEAR or year > MAX_YEAR:
            raise DomainValidationError(f"El año debe estar entre {MIN_YEAR} y {MAX_YEAR}")

        start, end = year_bounds(year)
        rows = (
            self.db.query(Invoice.consecutive_number)
            .filter(Invoice.issue_date >= start, Invoice.issue_date < end)
            .all()
        )
        numbers = [n for n in (parse_consecutive(row[0]) for row in rows) if n is not None]
        next_number = max(numbers) + 1 if numbers else 1
        logger.debug(f"Siguiente consecutivo para {year}: {next_number}")
        return next_number

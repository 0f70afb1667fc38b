from fastapi import APIRouter, Depends, status, Query, Response
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from facturacion.core.config import settings
from facturacion.database.database import get_db
from facturacion.modules.auth.dependencies import AuthDependencies
from facturacion.modules.invoices.service import InvoiceService
from facturacion.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceDetail, InvoiceList, InvoiceFilters, InvoiceStatus, NextConsecutive
)

# Router principal del módulo de facturas
router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("/", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice_data: InvoiceCreate,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_editor())
):
    """
    Crear una nueva factura

    En contratos de cliente descuenta existencias; en contratos de proveedor
    las suma y registra las entradas de inventario. Si no se indica el
    usuario firmante, firma el usuario autenticado.
    """
    service = InvoiceService(db)
    invoice = service.create_invoice(invoice_data, auth_context.user_id)
    return service.to_detail(invoice)


@router.get("/", response_model=InvoiceList)
def list_invoices(
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    contract_id: Optional[int] = Query(None, description="Filtrar por contrato"),
    authorized_worker_id: Optional[int] = Query(None, description="Filtrar por trabajador autorizado"),
    signed_by_id: Optional[int] = Query(None, description="Filtrar por usuario firmante"),
    consecutive_number: Optional[int] = Query(None, description="Número consecutivo"),
    status: Optional[InvoiceStatus] = Query(None, description="Estado de la factura"),
    start_date: Optional[datetime] = Query(None, description="Fecha inicial"),
    end_date: Optional[datetime] = Query(None, description="Fecha final"),
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_any_role())
):
    """
    Listar facturas con filtros

    Incluye las sumas de servicios y productos por tipo de contrato sobre
    todas las facturas filtradas, no solo la página actual.
    """
    service = InvoiceService(db)
    filters = InvoiceFilters(
        contract_id=contract_id,
        authorized_worker_id=authorized_worker_id,
        signed_by_id=signed_by_id,
        consecutive_number=consecutive_number,
        status=status,
        date_from=start_date,
        date_to=end_date,
    )
    return service.get_invoices(filters, limit, offset)


@router.get("/next-consecutive/{year}", response_model=NextConsecutive)
def get_next_consecutive(
    year: int,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_any_role())
):
    """Siguiente número consecutivo sugerido para el año (1900-2100)."""
    service = InvoiceService(db)
    return service.get_next_consecutive(year)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_any_role())
):
    """
    Obtener una factura con sus líneas y totales
    """
    service = InvoiceService(db)
    return service.get_invoice_detail(invoice_id)


@router.patch("/{invoice_id}", response_model=InvoiceDetail)
def update_invoice(
    invoice_id: int,
    invoice_update: InvoiceUpdate,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_editor())
):
    """
    Actualizar una factura

    Las líneas enviadas reemplazan a las existentes; el inventario se
    recalcula revirtiendo las líneas anteriores. El usuario firmante no
    puede cambiarse.
    """
    service = InvoiceService(db)
    invoice = service.update_invoice(invoice_id, invoice_update)
    return service.to_detail(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    auth_context = Depends(AuthDependencies.require_editor())
):
    """
    Eliminar una factura revirtiendo su efecto en inventario
    """
    service = InvoiceService(db)
    service.delete_invoice(invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

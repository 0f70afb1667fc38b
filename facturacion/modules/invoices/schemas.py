from pydantic import BaseModel, Field, AliasChoices, ConfigDict, field_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime, timezone

from facturacion.common.utils import MAX_AMOUNT

# Los mismos enums del modelo, para validar directamente desde los objetos ORM
from facturacion.modules.contracts.models import ContractRole
from facturacion.modules.invoices.models import InvoiceStatus


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Las fechas se guardan sin zona horaria, en UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Límite de la columna Integer de servicios
MAX_SERVICE_QUANTITY = 2147483647


# Line Schemas
# Se aceptan también los nombres de campo del cliente web anterior (cantidad, importe, ...)
class ServiceLineCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(..., min_length=1, max_length=255,
                             validation_alias=AliasChoices("description", "descripcion"))
    quantity: int = Field(..., ge=1, le=MAX_SERVICE_QUANTITY, validation_alias=AliasChoices("quantity", "cantidad"))
    unit_amount: Decimal = Field(..., ge=0, le=Decimal("999999.99"),
                                 validation_alias=AliasChoices("unit_amount", "importe"))
    unit_of_measure: str = Field(..., min_length=1, max_length=30,
                                 validation_alias=AliasChoices("unit_of_measure", "unidadMedida"))


class ProductLineCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., gt=0, validation_alias=AliasChoices("product_id", "id_producto"))
    quantity: Decimal = Field(..., ge=0, le=MAX_AMOUNT, validation_alias=AliasChoices("quantity", "cantidad"))
    # Solo se respetan cuando el contrato es de proveedor
    sale_price: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT,
                                          validation_alias=AliasChoices("sale_price", "precio"))
    sale_cost: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT,
                                         validation_alias=AliasChoices("sale_cost", "costo"))


class ServiceLineOut(BaseModel):
    id: int
    description: str
    quantity: int
    unit_amount: Decimal
    unit_of_measure: str

    class Config:
        from_attributes = True


class ProductLineOut(BaseModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: Decimal
    sale_price: Decimal
    sale_cost: Decimal

    class Config:
        from_attributes = True


class InvoiceEntryOut(BaseModel):
    id: int
    product_id: int
    contract_id: Optional[int] = None
    quantity: Decimal
    cost: Optional[Decimal] = None
    entry_date: datetime

    class Config:
        from_attributes = True


# Invoice Schemas
class InvoiceCreate(BaseModel):
    consecutive_number: int = Field(..., gt=0, description="Número consecutivo de la factura")
    issue_date: datetime
    status: InvoiceStatus = InvoiceStatus.NOT_INVOICED
    contract_id: int = Field(..., gt=0)
    authorized_worker_id: Optional[int] = Field(None, gt=0)
    signed_by_id: Optional[int] = Field(None, gt=0, description="Usuario que firma; por defecto el autenticado")
    note: Optional[str] = None
    additional_charge: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT)
    services: Optional[List[ServiceLineCreate]] = None
    products: Optional[List[ProductLineCreate]] = None

    @field_validator("issue_date")
    @classmethod
    def normalize_issue_date(cls, v):
        return _naive_utc(v)


class InvoiceUpdate(BaseModel):
    """
    Actualización parcial. Solo se aplican los campos enviados; services o
    products, si se envían, reemplazan por completo las líneas existentes.
    """
    consecutive_number: Optional[int] = Field(None, gt=0)
    issue_date: Optional[datetime] = None
    status: Optional[InvoiceStatus] = None
    contract_id: Optional[int] = Field(None, gt=0)
    authorized_worker_id: Optional[int] = Field(None, gt=0)
    signed_by_id: Optional[int] = Field(None, gt=0)
    note: Optional[str] = None
    additional_charge: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT)
    services: Optional[List[ServiceLineCreate]] = None
    products: Optional[List[ProductLineCreate]] = None

    @field_validator("issue_date")
    @classmethod
    def normalize_issue_date(cls, v):
        return _naive_utc(v)


class InvoiceTotals(BaseModel):
    service_total: Decimal = Decimal("0.00")
    product_total: Decimal = Decimal("0.00")
    cost_total: Decimal = Decimal("0.00")
    grand_total: Decimal = Decimal("0.00")


class InvoiceOut(BaseModel):
    id: int
    consecutive_number: int
    issue_date: datetime
    status: InvoiceStatus
    contract_id: int
    authorized_worker_id: Optional[int] = None
    signed_by_id: Optional[int] = None
    note: Optional[str] = None
    additional_charge: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceOut):
    contract_role: Optional[ContractRole] = None
    services: List[ServiceLineOut] = []
    product_lines: List[ProductLineOut] = []
    entries: List[InvoiceEntryOut] = []
    totals: InvoiceTotals = InvoiceTotals()
    total_with_charge: Decimal = Decimal("0.00")


class InvoiceFilters(BaseModel):
    contract_id: Optional[int] = None
    authorized_worker_id: Optional[int] = None
    signed_by_id: Optional[int] = None
    consecutive_number: Optional[int] = None
    status: Optional[InvoiceStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class InvoiceSums(BaseModel):
    """Sumas agregadas por tipo de contrato y estado sobre todas las facturas filtradas."""
    services_suppliers: Decimal = Decimal("0.00")
    services_clients: Decimal = Decimal("0.00")
    services_suppliers_invoiced: Decimal = Decimal("0.00")
    services_clients_invoiced: Decimal = Decimal("0.00")
    products_suppliers: Decimal = Decimal("0.00")
    products_clients: Decimal = Decimal("0.00")
    products_suppliers_invoiced: Decimal = Decimal("0.00")
    products_clients_invoiced: Decimal = Decimal("0.00")


class InvoiceList(BaseModel):
    invoices: List[InvoiceDetail]
    total: int
    limit: int
    offset: int
    sums: InvoiceSums


class NextConsecutive(BaseModel):
    year: int
    next_consecutive: int
    message: str

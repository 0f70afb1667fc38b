"""
Módulo de Facturas

TIPOS DE CONTRATO:
- Client: las líneas de producto descuentan existencias
- Supplier: las líneas de producto suman existencias y generan entradas

NUMERACIÓN (solo contratos de cliente):
- Un consecutivo no se repite dentro del mismo año
- La factura N debe tener fecha posterior a la factura N-1 del mismo año

LÍNEAS:
- Servicios o productos, nunca ambos
- El precio y costo de cada producto se capturan al facturar

ACTUALIZACIÓN Y ELIMINACIÓN:
- Se revierte el efecto en inventario de las líneas anteriores antes de
  aplicar las nuevas, todo en una sola transacción
"""

from .models import Invoice, Service, InvoiceProduct, InvoiceStatus
from .schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceDetail, InvoiceList, NextConsecutive
)
from .numbering import ConsecutiveNumberValidator
from .builder import InvoiceAggregateBuilder
from .service import InvoiceService

__all__ = [
    # Models
    "Invoice", "Service", "InvoiceProduct", "InvoiceStatus",

    # Schemas
    "InvoiceCreate", "InvoiceUpdate", "InvoiceDetail", "InvoiceList", "NextConsecutive",

    # Services
    "ConsecutiveNumberValidator", "InvoiceAggregateBuilder", "InvoiceService",
]

"""
Construcción de las líneas de una factura y cálculo de totales.

Una factura lleva líneas de servicio o líneas de producto, nunca ambas.
Los rangos de cada campo se validan en los esquemas; aquí se validan las
reglas que dependen de la base de datos (existencia de productos y
existencias suficientes para contratos de cliente).
"""
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from facturacion.common.exceptions import ErrorCollector, InsufficientStockError, ReferenceNotFoundError
from facturacion.common.utils import round2, to_decimal
from facturacion.modules.contracts.models import Contract
from facturacion.modules.invoices.models import Invoice, Service, InvoiceProduct
from facturacion.modules.invoices.schemas import ServiceLineCreate, ProductLineCreate, InvoiceTotals
from facturacion.modules.products.models import Product


class InvoiceAggregateBuilder:

    def __init__(self, db: Session):
        self.db = db

    def validate_lines(
        self,
        services: Optional[Sequence[ServiceLineCreate]],
        products: Optional[Sequence[ProductLineCreate]],
        contract: Optional[Contract],
        errors: ErrorCollector,
        stock_credits: Optional[Dict[int, Decimal]] = None,
    ) -> Dict[int, Product]:
        """
        Validar las líneas recibidas y acumular los errores en `errors`.

        `stock_credits` son las cantidades que volverán al inventario antes
        de aplicar las nuevas líneas (al actualizar una factura de cliente).

        Devuelve los productos referenciados indexados por id.
        """
        if services is not None and products is not None:
            errors.add("Una factura no puede tener servicios y productos al mismo tiempo")

        if not products:
            return {}

        product_ids = {line.product_id for line in products}
        catalog = {
            product.id: product
            for product in self.db.query(Product).filter(Product.id.in_(product_ids)).all()
        }
        for index, line in enumerate(products):
            if line.product_id not in catalog:
                errors.add(f"products[{index}]: El producto con ID {line.product_id} no existe", ReferenceNotFoundError)

        if contract is not None and contract.is_client:
            self._check_stock(products, catalog, errors, stock_credits or {})

        return catalog

    @staticmethod
    def _check_stock(products, catalog, errors: ErrorCollector, stock_credits: Dict[int, Decimal]) -> None:
        # Una misma referencia puede aparecer en varias líneas
        requested: "OrderedDict[int, Decimal]" = OrderedDict()
        first_index: Dict[int, int] = {}
        for index, line in enumerate(products):
            if line.product_id not in catalog:
                continue
            requested[line.product_id] = requested.get(line.product_id, Decimal("0")) + round2(line.quantity)
            first_index.setdefault(line.product_id, index)

        for product_id, quantity in requested.items():
            product = catalog[product_id]
            available = round2(to_decimal(product.on_hand_quantity) + stock_credits.get(product_id, Decimal("0")))
            if quantity > available:
                errors.add(
                    f"products[{first_index[product_id]}]: La cantidad en existencia del producto "
                    f"{product.name} es insuficiente: disponible {available}, requerido {quantity}",
                    InsufficientStockError,
                )

    @staticmethod
    def build_services(services: Sequence[ServiceLineCreate]) -> List[Service]:
        return [
            Service(
                description=line.description,
                quantity=line.quantity,
                unit_amount=round2(line.unit_amount),
                unit_of_measure=line.unit_of_measure,
            )
            for line in services
        ]

    @staticmethod
    def build_product_lines(
        products: Sequence[ProductLineCreate],
        contract: Contract,
        catalog: Dict[int, Product],
    ) -> List[InvoiceProduct]:
        """
        Crear las líneas de producto capturando precio y costo actuales.

        Los valores enviados por el cliente solo se respetan en contratos
        de proveedor.
        """
        lines = []
        for line in products:
            product = catalog[line.product_id]
            sale_price = product.price
            sale_cost = product.cost
            if contract.is_supplier:
                if line.sale_price is not None:
                    sale_price = line.sale_price
                if line.sale_cost is not None:
                    sale_cost = line.sale_cost
            lines.append(InvoiceProduct(
                product_id=product.id,
                quantity=round2(line.quantity),
                sale_price=round2(sale_price),
                sale_cost=round2(sale_cost),
            ))
        return lines

    @staticmethod
    def compute_totals(invoice: Invoice) -> InvoiceTotals:
        # Se redondea una sola vez al final, no por término
        service_total = sum(
            (to_decimal(s.quantity) * to_decimal(s.unit_amount) for s in invoice.services), Decimal("0")
        )
        product_total = sum(
            (to_decimal(p.quantity) * to_decimal(p.sale_price) for p in invoice.product_lines), Decimal("0")
        )
        cost_total = sum(
            (to_decimal(p.quantity) * to_decimal(p.sale_cost) for p in invoice.product_lines), Decimal("0")
        )
        return InvoiceTotals(
            service_total=round2(service_total),
            product_total=round2(product_total),
            cost_total=round2(cost_total),
            grand_total=round2(service_total + product_total),
        )

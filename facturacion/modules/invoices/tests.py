"""
Tests para el módulo de Facturas

Cubren:
- Efecto en inventario de facturas de cliente y de proveedor
- Reversión al eliminar y equivalencia de la actualización con borrar y recrear
- Unicidad y orden de los números consecutivos (solo contratos de cliente)
- Exclusividad de servicios y productos
- Totales y sumas agregadas
- Endpoints HTTP principales
"""

import pytest
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from facturacion.common.exceptions import (
    DomainValidationError, DuplicateConsecutiveError, ImmutableFieldError, InsufficientStockError,
    InternalError, NotFoundError, OutOfOrderDateError, ReferenceNotFoundError
)
from facturacion.common.utils import MAX_AMOUNT, parse_consecutive
from facturacion.modules.auth.models import User, UserRole
from facturacion.modules.contracts.models import ContractRole
from facturacion.modules.inventory.models import InventoryEntry
from facturacion.modules.inventory.schemas import StockOutCreate
from facturacion.modules.inventory.service import StockOutService
from facturacion.modules.invoices.builder import InvoiceAggregateBuilder
from facturacion.modules.invoices.models import Invoice, InvoiceProduct, Service, InvoiceStatus
from facturacion.modules.invoices.numbering import ConsecutiveNumberValidator
from facturacion.modules.invoices.schemas import InvoiceCreate, InvoiceUpdate, InvoiceFilters
from facturacion.modules.invoices.service import InvoiceService


def _invoice_data(contract, number, issue_date, **kwargs) -> InvoiceCreate:
    return InvoiceCreate(contract_id=contract.id, consecutive_number=number, issue_date=issue_date, **kwargs)


def _stock(db, product) -> Decimal:
    db.refresh(product)
    return product.on_hand_quantity


# ===== INVENTARIO AL CREAR =====

class TestCreateInvoice:

    def test_client_invoice_decrements_stock(self, db_session, client_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            products=[{"id_producto": product.id, "cantidad": 4}],
        ))

        assert invoice.id is not None
        assert len(invoice.product_lines) == 1
        assert _stock(db_session, product) == Decimal("6")
        # Las facturas de cliente no generan entradas
        assert db_session.query(InventoryEntry).count() == 0

    def test_supplier_invoice_increments_stock_and_creates_entry(self, db_session, supplier_contract, make_product):
        product = make_product(on_hand="6")
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            supplier_contract, 50, datetime(2025, 1, 2),
            products=[{"product_id": product.id, "cantidad": 3, "costo": "2.5"}],
        ))

        assert _stock(db_session, product) == Decimal("9")
        entries = db_session.query(InventoryEntry).filter(InventoryEntry.invoice_id == invoice.id).all()
        assert len(entries) == 1
        assert entries[0].product_id == product.id
        assert entries[0].contract_id == supplier_contract.id
        assert entries[0].quantity == Decimal("3")
        assert entries[0].cost == Decimal("2.50")

    def test_insufficient_stock_leaves_stock_unchanged(self, db_session, client_contract, make_product):
        product = make_product(on_hand="2")
        service = InvoiceService(db_session)

        with pytest.raises(InsufficientStockError) as exc_info:
            service.create_invoice(_invoice_data(
                client_contract, 1, datetime(2025, 1, 1),
                products=[{"product_id": product.id, "quantity": 5}],
            ))

        assert "products[0]" in exc_info.value.errors[0]
        assert _stock(db_session, product) == Decimal("2")
        assert db_session.query(Invoice).count() == 0

    def test_repeated_product_is_checked_against_total(self, db_session, client_contract, make_product):
        product = make_product(on_hand="5")
        service = InvoiceService(db_session)

        with pytest.raises(InsufficientStockError):
            service.create_invoice(_invoice_data(
                client_contract, 1, datetime(2025, 1, 1),
                products=[
                    {"product_id": product.id, "quantity": 3},
                    {"product_id": product.id, "quantity": 3},
                ],
            ))
        assert _stock(db_session, product) == Decimal("5")

    def test_multi_product_invoice(self, db_session, client_contract, make_product):
        p1 = make_product(on_hand="10")
        p2 = make_product(on_hand="20")
        service = InvoiceService(db_session)
        # Orden de entrada inverso al orden de id
        service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            products=[{"product_id": p2.id, "quantity": 5}, {"product_id": p1.id, "quantity": "2.5"}],
        ))
        assert _stock(db_session, p1) == Decimal("7.5")
        assert _stock(db_session, p2) == Decimal("15")

    def test_client_invoice_captures_product_price_and_ignores_overrides(self, db_session, client_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            products=[{"product_id": product.id, "quantity": 1, "precio": "99", "costo": "99"}],
        ))
        line = invoice.product_lines[0]
        assert line.sale_price == Decimal("10.00")
        assert line.sale_cost == Decimal("6.00")

    def test_captured_price_survives_product_price_change(self, db_session, client_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            products=[{"product_id": product.id, "quantity": 2}],
        ))
        product.price = Decimal("50.00")
        db_session.commit()

        totals = InvoiceAggregateBuilder.compute_totals(service.get_invoice_by_id(invoice.id))
        assert totals.product_total == Decimal("20.00")

    def test_signing_user_defaults_to_caller(self, db_session, client_contract, sample_user):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(
            _invoice_data(client_contract, 1, datetime(2025, 1, 1)),
            user_id=sample_user.id,
        )
        assert invoice.signed_by_id == sample_user.id
        assert invoice.status == InvoiceStatus.NOT_INVOICED

    def test_service_lines(self, db_session, client_contract):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            services=[
                {"descripcion": "Transporte", "cantidad": 2, "importe": "150.50", "unidadMedida": "viaje"},
                {"description": "Carga", "quantity": 1, "unit_amount": "20", "unit_of_measure": "u"},
            ],
        ))
        assert len(invoice.services) == 2
        totals = InvoiceAggregateBuilder.compute_totals(invoice)
        assert totals.service_total == Decimal("321.00")
        assert totals.grand_total == Decimal("321.00")


# ===== VALIDACIÓN =====

class TestValidation:

    def test_services_and_products_are_mutually_exclusive(self, db_session, client_contract, product):
        service = InvoiceService(db_session)
        with pytest.raises(DomainValidationError):
            service.create_invoice(_invoice_data(
                client_contract, 1, datetime(2025, 1, 1),
                services=[{"description": "Flete", "quantity": 1, "unit_amount": 10, "unit_of_measure": "u"}],
                products=[{"product_id": product.id, "quantity": 1}],
            ))
        assert _stock(db_session, product) == Decimal("10")

    def test_mutual_exclusivity_regardless_of_contents(self, db_session, client_contract):
        service = InvoiceService(db_session)
        with pytest.raises(DomainValidationError):
            service.create_invoice(_invoice_data(client_contract, 1, datetime(2025, 1, 1), services=[], products=[]))

    def test_missing_references_are_reported_together(self, db_session, client_contract):
        service = InvoiceService(db_session)
        with pytest.raises(ReferenceNotFoundError) as exc_info:
            service.create_invoice(_invoice_data(
                client_contract, 1, datetime(2025, 1, 1),
                authorized_worker_id=999,
                products=[{"product_id": 998, "quantity": 1}],
            ))
        assert len(exc_info.value.errors) == 2

    def test_unknown_contract(self, db_session):
        service = InvoiceService(db_session)
        data = InvoiceCreate(contract_id=12345, consecutive_number=1, issue_date=datetime(2025, 1, 1))
        with pytest.raises(ReferenceNotFoundError):
            service.create_invoice(data)

    def test_mixed_violations_raise_validation_error_with_all_messages(
        self, db_session, client_contract, make_product
    ):
        product = make_product(on_hand="1")
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 10, datetime(2025, 1, 1)))

        with pytest.raises(DomainValidationError) as exc_info:
            service.create_invoice(_invoice_data(
                client_contract, 10, datetime(2025, 2, 1),
                products=[{"product_id": product.id, "quantity": 5}],
            ))
        assert len(exc_info.value.errors) == 2


# ===== NUMERACIÓN =====

class TestConsecutiveNumbering:

    def test_duplicate_number_same_year_across_client_contracts(self, db_session, make_contract):
        first = make_contract(ContractRole.CLIENT)
        second = make_contract(ContractRole.CLIENT)
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(first, 10, datetime(2025, 3, 1)))

        with pytest.raises(DuplicateConsecutiveError):
            service.create_invoice(_invoice_data(second, 10, datetime(2025, 6, 1)))

    def test_duplicate_number_allowed_on_supplier_contract(self, db_session, client_contract, supplier_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 10, datetime(2025, 3, 1)))

        invoice = service.create_invoice(_invoice_data(supplier_contract, 10, datetime(2025, 6, 1)))
        again = service.create_invoice(_invoice_data(supplier_contract, 10, datetime(2025, 7, 1)))
        assert invoice.id != again.id

    def test_same_number_in_different_year(self, db_session, client_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 10, datetime(2024, 12, 31)))
        invoice = service.create_invoice(_invoice_data(client_contract, 10, datetime(2025, 1, 1)))
        assert invoice.consecutive_number == 10

    def test_date_must_follow_previous_number(self, db_session, client_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 5, datetime(2025, 3, 1)))

        with pytest.raises(OutOfOrderDateError):
            service.create_invoice(_invoice_data(client_contract, 6, datetime(2025, 2, 1)))
        with pytest.raises(OutOfOrderDateError):
            service.create_invoice(_invoice_data(client_contract, 6, datetime(2025, 3, 1)))

        invoice = service.create_invoice(_invoice_data(client_contract, 6, datetime(2025, 4, 1)))
        assert invoice.id is not None

    def test_gaps_are_tolerated(self, db_session, client_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 5, datetime(2025, 3, 1)))
        invoice = service.create_invoice(_invoice_data(client_contract, 9, datetime(2025, 1, 1)))
        assert invoice.id is not None

    def test_order_not_checked_for_supplier(self, db_session, supplier_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(supplier_contract, 5, datetime(2025, 3, 1)))
        invoice = service.create_invoice(_invoice_data(supplier_contract, 6, datetime(2025, 1, 1)))
        assert invoice.id is not None

    def test_next_available(self, db_session, client_contract, supplier_contract):
        validator = ConsecutiveNumberValidator(db_session)
        assert validator.next_available(2025) == 1

        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 3, datetime(2025, 1, 1)))
        service.create_invoice(_invoice_data(supplier_contract, 40, datetime(2025, 2, 1)))
        service.create_invoice(_invoice_data(client_contract, 90, datetime(2024, 2, 1)))

        # Cuenta facturas de cualquier tipo de contrato, solo del año pedido
        assert validator.next_available(2025) == 41
        assert validator.next_available(2024) == 91
        assert service.get_next_consecutive(2026).next_consecutive == 1

    def test_next_available_year_range(self, db_session):
        validator = ConsecutiveNumberValidator(db_session)
        with pytest.raises(DomainValidationError):
            validator.next_available(1899)
        with pytest.raises(DomainValidationError):
            validator.next_available(2101)

    def test_parse_consecutive(self):
        assert parse_consecutive("12/2025") == 12
        assert parse_consecutive(" 7 ") == 7
        assert parse_consecutive(3) == 3
        assert parse_consecutive("A-1") is None
        assert parse_consecutive(None) is None

    def test_uniqueness_rechecked_inside_transaction(self, db_session, make_contract, product, monkeypatch):
        own = make_contract(ContractRole.CLIENT)
        rival = make_contract(ContractRole.CLIENT)
        service = InvoiceService(db_session)

        # Otra transacción guarda el mismo número mientras esta espera el bloqueo del año
        def concurrent_insert(year):
            db_session.add(Invoice(
                contract_id=rival.id, consecutive_number=1, issue_date=datetime(year, 3, 1),
                status=InvoiceStatus.NOT_INVOICED,
            ))
            db_session.flush()

        monkeypatch.setattr(service.numbering, "lock_year", concurrent_insert)

        with pytest.raises(DuplicateConsecutiveError):
            service.create_invoice(_invoice_data(
                own, 1, datetime(2025, 2, 1), products=[{"product_id": product.id, "quantity": 4}],
            ))

        assert _stock(db_session, product) == Decimal("10")
        assert db_session.query(Invoice).count() == 0

    def test_year_lock_is_taken_on_postgresql_only(self, db_session):
        class RecordingSession:
            def __init__(self, dialect):
                self.dialect = dialect
                self.statements = []

            def get_bind(self):
                return SimpleNamespace(dialect=SimpleNamespace(name=self.dialect))

            def execute(self, statement):
                self.statements.append(str(statement))

        postgres = RecordingSession("postgresql")
        ConsecutiveNumberValidator(postgres).lock_year(2025)
        assert len(postgres.statements) == 1
        assert "pg_advisory_xact_lock" in postgres.statements[0]

        sqlite = RecordingSession("sqlite")
        ConsecutiveNumberValidator(sqlite).lock_year(2025)
        assert sqlite.statements == []

        # Con la sesión real de SQLite no hace nada
        ConsecutiveNumberValidator(db_session).lock_year(2025)


# ===== ACTUALIZACIÓN =====

class TestUpdateInvoice:

    def test_update_equals_delete_and_recreate(self, db_session, client_contract, make_product):
        p1 = make_product(on_hand="10")
        p2 = make_product(on_hand="10")
        service = InvoiceService(db_session)

        updated = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": p1.id, "quantity": 5}],
        ))
        service.update_invoice(updated.id, InvoiceUpdate(products=[{"product_id": p1.id, "quantity": 3}]))

        recreated = service.create_invoice(_invoice_data(
            client_contract, 2, datetime(2025, 1, 2), products=[{"product_id": p2.id, "quantity": 5}],
        ))
        service.delete_invoice(recreated.id)
        service.create_invoice(_invoice_data(
            client_contract, 2, datetime(2025, 1, 2), products=[{"product_id": p2.id, "quantity": 3}],
        ))

        assert _stock(db_session, p1) == Decimal("7")
        assert _stock(db_session, p1) == _stock(db_session, p2)

    def test_update_can_use_stock_returned_by_old_lines(self, db_session, client_contract, make_product):
        product = make_product(on_hand="5")
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 5}],
        ))
        assert _stock(db_session, product) == Decimal("0")

        service.update_invoice(invoice.id, InvoiceUpdate(products=[{"product_id": product.id, "quantity": 4}]))
        assert _stock(db_session, product) == Decimal("1")

    def test_update_supplier_lines_replaces_entries(self, db_session, supplier_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 5}],
        ))
        assert _stock(db_session, product) == Decimal("15")

        service.update_invoice(invoice.id, InvoiceUpdate(products=[{"product_id": product.id, "quantity": 2}]))

        assert _stock(db_session, product) == Decimal("12")
        entries = db_session.query(InventoryEntry).filter(InventoryEntry.invoice_id == invoice.id).all()
        assert [e.quantity for e in entries] == [Decimal("2")]

    def test_contract_role_change_reapplies_inventory(
        self, db_session, client_contract, supplier_contract, product
    ):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
        ))
        assert _stock(db_session, product) == Decimal("6")

        service.update_invoice(invoice.id, InvoiceUpdate(contract_id=supplier_contract.id))

        # Se devuelve lo descontado y luego se suma como compra
        assert _stock(db_session, product) == Decimal("14")
        assert db_session.query(InventoryEntry).filter(InventoryEntry.invoice_id == invoice.id).count() == 1

    def test_supplier_to_client_with_new_lines(self, db_session, client_contract, supplier_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
        ))
        service.update_invoice(invoice.id, InvoiceUpdate(
            contract_id=client_contract.id,
            products=[{"product_id": product.id, "quantity": 1}],
        ))

        assert _stock(db_session, product) == Decimal("9")
        assert db_session.query(InventoryEntry).count() == 0

    def test_services_replace_product_lines(self, db_session, client_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
        ))

        updated = service.update_invoice(invoice.id, InvoiceUpdate(
            services=[{"description": "Mano de obra", "quantity": 1, "unit_amount": 30, "unit_of_measure": "h"}],
        ))

        assert _stock(db_session, product) == Decimal("10")
        assert updated.product_lines == []
        assert len(updated.services) == 1

    def test_scalar_update_keeps_lines(self, db_session, client_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
        ))
        updated = service.update_invoice(invoice.id, InvoiceUpdate(
            note="Entregado", status="Invoiced", additional_charge="12.345",
        ))

        assert updated.note == "Entregado"
        assert updated.status == InvoiceStatus.INVOICED
        assert updated.additional_charge == Decimal("12.35")
        assert len(updated.product_lines) == 1
        assert _stock(db_session, product) == Decimal("6")

    def test_update_excludes_itself_from_uniqueness(self, db_session, client_contract):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(client_contract, 10, datetime(2025, 1, 1)))
        updated = service.update_invoice(invoice.id, InvoiceUpdate(issue_date=datetime(2025, 5, 1)))
        assert updated.issue_date == datetime(2025, 5, 1)

    def test_update_to_taken_number(self, db_session, client_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 10, datetime(2025, 1, 1)))
        other = service.create_invoice(_invoice_data(client_contract, 20, datetime(2025, 2, 1)))

        with pytest.raises(DuplicateConsecutiveError):
            service.update_invoice(other.id, InvoiceUpdate(consecutive_number=10))

    def test_signing_user_is_immutable(self, db_session, client_contract, sample_user):
        other_user = User(full_name="Otro Usuario", username="otro", role=UserRole.SALES)
        db_session.add(other_user)
        db_session.commit()

        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(client_contract, 1, datetime(2025, 1, 1)), user_id=sample_user.id)

        with pytest.raises(ImmutableFieldError):
            service.update_invoice(invoice.id, InvoiceUpdate(signed_by_id=other_user.id))

        # Enviar el mismo valor no es un cambio
        updated = service.update_invoice(invoice.id, InvoiceUpdate(signed_by_id=sample_user.id, note="ok"))
        assert updated.signed_by_id == sample_user.id

    def test_failed_update_rolls_back(self, db_session, client_contract, make_product):
        p1 = make_product(on_hand="10")
        p2 = make_product(on_hand="1")
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": p1.id, "quantity": 4}],
        ))

        with pytest.raises(InsufficientStockError):
            service.update_invoice(invoice.id, InvoiceUpdate(products=[{"product_id": p2.id, "quantity": 3}]))

        assert _stock(db_session, p1) == Decimal("6")
        assert _stock(db_session, p2) == Decimal("1")
        assert len(service.get_invoice_by_id(invoice.id).product_lines) == 1

    def test_update_missing_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            InvoiceService(db_session).update_invoice(999, InvoiceUpdate(note="x"))


# ===== ELIMINACIÓN =====

class TestDeleteInvoice:

    def test_create_then_delete_restores_stock(self, db_session, client_contract, supplier_contract, make_product):
        p1 = make_product(on_hand="10.25")
        p2 = make_product(on_hand="3")
        service = InvoiceService(db_session)

        client_invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            products=[{"product_id": p1.id, "quantity": "4.75"}, {"product_id": p2.id, "quantity": 3}],
        ))
        supplier_invoice = service.create_invoice(_invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1),
            products=[{"product_id": p1.id, "quantity": "0.5"}],
        ))

        assert service.delete_invoice(client_invoice.id) is True
        assert service.delete_invoice(supplier_invoice.id) is True

        assert _stock(db_session, p1) == Decimal("10.25")
        assert _stock(db_session, p2) == Decimal("3")
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(InvoiceProduct).count() == 0
        assert db_session.query(InventoryEntry).count() == 0

    def test_delete_removes_services(self, db_session, client_contract):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1),
            services=[{"description": "Flete", "quantity": 1, "unit_amount": 10, "unit_of_measure": "u"}],
        ))
        service.delete_invoice(invoice.id)
        assert db_session.query(Service).count() == 0

    def test_supplier_delete_fails_when_goods_were_sold(
        self, db_session, supplier_contract, product, sample_user
    ):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 5}],
        ))
        StockOutService(db_session).create_stock_out(
            StockOutCreate(product_id=product.id, quantity=12, description="Merma"), sample_user.id
        )
        assert _stock(db_session, product) == Decimal("3")

        with pytest.raises(InsufficientStockError):
            service.delete_invoice(invoice.id)

        assert _stock(db_session, product) == Decimal("3")
        assert service.get_invoice_by_id(invoice.id) is not None
        assert db_session.query(InventoryEntry).count() == 1

    def test_delete_missing_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            InvoiceService(db_session).delete_invoice(999)


# ===== TOTALES Y SUMAS =====

class TestTotals:

    def test_totals_round_once_at_the_end(self, db_session, supplier_contract, product):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1),
            additional_charge="5",
            products=[
                {"product_id": product.id, "quantity": "0.33", "precio": "0.33", "costo": "0.10"},
                {"product_id": product.id, "quantity": "0.33", "precio": "0.33", "costo": "0.10"},
            ],
        ))
        detail = service.get_invoice_detail(invoice.id)

        # Costo: 2 x 0.033 = 0.066 -> 0.07 (por término daría 0.03 + 0.03)
        assert detail.totals.product_total == Decimal("0.22")
        assert detail.totals.cost_total == Decimal("0.07")
        assert detail.totals.service_total == Decimal("0.00")
        assert detail.total_with_charge == Decimal("5.22")

    def test_sums_by_contract_role_and_status(self, db_session, client_contract, supplier_contract, product):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), status="Invoiced",
            products=[{"product_id": product.id, "quantity": 2}],
        ))
        service.create_invoice(_invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1),
            services=[{"description": "Flete", "quantity": 1, "unit_amount": 100, "unit_of_measure": "u"}],
        ))

        result = service.get_invoices(InvoiceFilters(), limit=1)

        assert result.total == 2
        assert len(result.invoices) == 1
        assert result.sums.products_clients == Decimal("20.00")
        assert result.sums.products_clients_invoiced == Decimal("20.00")
        assert result.sums.services_suppliers == Decimal("100.00")
        assert result.sums.services_suppliers_invoiced == Decimal("0")

    def test_filters(self, db_session, client_contract, supplier_contract):
        service = InvoiceService(db_session)
        service.create_invoice(_invoice_data(client_contract, 1, datetime(2025, 1, 1)))
        service.create_invoice(_invoice_data(supplier_contract, 1, datetime(2025, 6, 1), status="Cancelled"))

        by_contract = service.get_invoices(InvoiceFilters(contract_id=supplier_contract.id))
        by_status = service.get_invoices(InvoiceFilters(status="NotInvoiced"))
        by_date = service.get_invoices(InvoiceFilters(date_from=datetime(2025, 3, 1)))

        assert by_contract.total == 1
        assert by_status.invoices[0].contract_id == client_contract.id
        assert by_date.invoices[0].status == "Cancelled"


# ===== RANGOS NUMÉRICOS =====

class TestNumericRanges:

    def test_amounts_above_column_limit_are_rejected(self, supplier_contract, product):
        with pytest.raises(ValidationError) as exc_info:
            _invoice_data(
                supplier_contract, 1, datetime(2025, 1, 1),
                products=[{"id_producto": product.id, "cantidad": "100000000000", "costo": "1e12"}],
                additional_charge=Decimal("1e13"),
            )
        assert len(exc_info.value.errors()) == 3

    def test_largest_amount_is_accepted(self, supplier_contract, product):
        data = _invoice_data(
            supplier_contract, 1, datetime(2025, 1, 1),
            products=[{"product_id": product.id, "quantity": 1, "sale_price": MAX_AMOUNT}],
        )
        assert data.products[0].sale_price == MAX_AMOUNT

    def test_supplier_invoice_cannot_overflow_stock(self, db_session, supplier_contract, make_product):
        product = make_product(on_hand="9999999999.00")
        service = InvoiceService(db_session)

        with pytest.raises(DomainValidationError):
            service.create_invoice(_invoice_data(
                supplier_contract, 1, datetime(2025, 1, 1),
                products=[{"product_id": product.id, "quantity": 5}],
            ))

        assert _stock(db_session, product) == Decimal("9999999999.00")
        assert db_session.query(Invoice).count() == 0

    def test_overflow_is_reported_as_error_list(self, client, supplier_contract, product, db_session):
        response = client.post("/invoices/", json={
            "contract_id": supplier_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
            "additional_charge": "10000000000000",
            "products": [{"product_id": product.id, "quantity": "100000000000"}],
        })
        assert response.status_code == 400
        assert len(response.json()["errors"]) == 2
        assert _stock(db_session, product) == Decimal("10")


# ===== ERRORES INTERNOS =====

def _fail_commit(monkeypatch, db):
    def commit():
        raise OperationalError(
            "UPDATE products SET on_hand_quantity=%(on_hand_quantity)s",
            {}, Exception("server closed the connection unexpectedly"),
        )
    monkeypatch.setattr(db, "commit", commit)


class TestInternalErrors:

    def test_create_failure_is_generic_and_rolled_back(self, db_session, client_contract, product, monkeypatch):
        _fail_commit(monkeypatch, db_session)

        with pytest.raises(InternalError) as exc_info:
            InvoiceService(db_session).create_invoice(_invoice_data(
                client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
            ))

        assert exc_info.value.status_code == 500
        assert exc_info.value.errors == ["Error interno al crear la factura"]
        assert "server closed" not in str(exc_info.value.detail)
        monkeypatch.undo()
        assert _stock(db_session, product) == Decimal("10")
        assert db_session.query(Invoice).count() == 0

    def test_update_failure_keeps_previous_state(self, db_session, client_contract, product, monkeypatch):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
        ))
        _fail_commit(monkeypatch, db_session)

        with pytest.raises(InternalError) as exc_info:
            service.update_invoice(invoice.id, InvoiceUpdate(products=[{"product_id": product.id, "quantity": 1}]))

        assert exc_info.value.errors == ["Error interno al actualizar la factura"]
        monkeypatch.undo()
        assert _stock(db_session, product) == Decimal("6")
        lines = service.get_invoice_by_id(invoice.id).product_lines
        assert [line.quantity for line in lines] == [Decimal("4")]

    def test_delete_failure_keeps_invoice(self, db_session, client_contract, product, monkeypatch):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(_invoice_data(
            client_contract, 1, datetime(2025, 1, 1), products=[{"product_id": product.id, "quantity": 4}],
        ))
        invoice_id = invoice.id
        _fail_commit(monkeypatch, db_session)

        with pytest.raises(InternalError) as exc_info:
            service.delete_invoice(invoice_id)

        assert exc_info.value.errors == ["Error interno al eliminar la factura"]
        monkeypatch.undo()
        assert _stock(db_session, product) == Decimal("6")
        assert len(service.get_invoice_by_id(invoice_id).product_lines) == 1

    def test_internal_error_response(self, client, client_contract, db_session, monkeypatch):
        _fail_commit(monkeypatch, db_session)

        response = client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
        })

        assert response.status_code == 500
        assert response.json() == {"errors": ["Error interno al crear la factura"]}


# ===== ENDPOINTS =====

class TestInvoiceEndpoints:

    def test_create_invoice(self, client, client_contract, product, sample_user, db_session):
        response = client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
            "products": [{"id_producto": product.id, "cantidad": 4}],
        })

        assert response.status_code == 201
        body = response.json()
        assert body["signed_by_id"] == sample_user.id
        assert body["contract_role"] == "Client"
        assert Decimal(body["totals"]["product_total"]) == Decimal("40.00")
        assert _stock(db_session, product) == Decimal("6")

    def test_create_invoice_with_both_line_kinds(self, client, client_contract, product):
        response = client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
            "services": [{"description": "Flete", "quantity": 1, "unit_amount": 1, "unit_of_measure": "u"}],
            "products": [{"product_id": product.id, "quantity": 1}],
        })
        assert response.status_code == 400
        assert len(response.json()["errors"]) == 1

    def test_schema_errors_share_error_shape(self, client, client_contract):
        response = client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 0,
            "issue_date": "2025-01-01T00:00:00",
            "services": [{"description": "Flete", "quantity": 0, "unit_amount": 1000000, "unit_of_measure": "u"}],
        })
        assert response.status_code == 400
        assert len(response.json()["errors"]) == 3

    def test_get_missing_invoice(self, client):
        response = client.get("/invoices/999")
        assert response.status_code == 404
        assert response.json()["errors"]

    def test_next_consecutive(self, client):
        response = client.get("/invoices/next-consecutive/2025")
        assert response.status_code == 200
        assert response.json()["next_consecutive"] == 1

        assert client.get("/invoices/next-consecutive/3000").status_code == 400

    def test_patch_signing_user_rejected(self, client, client_contract, sample_user):
        created = client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
        }).json()

        response = client.patch(f"/invoices/{created['id']}", json={"signed_by_id": sample_user.id + 1})
        assert response.status_code == 400

    def test_delete_invoice(self, client, client_contract, product, db_session):
        created = client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
            "products": [{"product_id": product.id, "quantity": 4}],
        }).json()

        response = client.delete(f"/invoices/{created['id']}")
        assert response.status_code == 204
        assert _stock(db_session, product) == Decimal("10")
        assert client.get(f"/invoices/{created['id']}").status_code == 404

    def test_list_invoices(self, client, client_contract):
        client.post("/invoices/", json={
            "contract_id": client_contract.id,
            "consecutive_number": 1,
            "issue_date": "2025-01-01T00:00:00",
        })
        response = client.get("/invoices/", params={"contract_id": client_contract.id})
        assert response.status_code == 200
        assert response.json()["total"] == 1

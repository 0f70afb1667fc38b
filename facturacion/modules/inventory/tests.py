"""
Tests para el módulo de Inventario

Cubren el InventoryLedger (bloqueo, redondeo, no negatividad) y los
servicios de entradas y salidas.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError

from facturacion.common.exceptions import (
    DomainValidationError, InsufficientStockError, NotFoundError, ReferenceNotFoundError
)
from facturacion.common.utils import MAX_AMOUNT
from facturacion.modules.inventory.ledger import InventoryLedger
from facturacion.modules.inventory.schemas import (
    EntryCreate, EntryUpdate, EntryFilters, StockOutCreate, StockOutUpdate
)
from facturacion.modules.inventory.service import EntryService, StockOutService
from facturacion.modules.invoices.schemas import InvoiceCreate
from facturacion.modules.invoices.service import InvoiceService


def _stock(db, product) -> Decimal:
    db.refresh(product)
    return product.on_hand_quantity


# ===== LEDGER =====

class TestInventoryLedger:

    def test_increment_and_decrement_round_to_two_places(self, db_session, product):
        ledger = InventoryLedger(db_session)
        assert ledger.increment(product.id, "1.005") == Decimal("11.01")
        assert ledger.decrement(product.id, Decimal("0.014")) == Decimal("11.00")
        db_session.commit()
        assert _stock(db_session, product) == Decimal("11.00")

    def test_decrement_below_zero_fails(self, db_session, make_product):
        product = make_product(on_hand="2")
        ledger = InventoryLedger(db_session)

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.decrement(product.id, 5, context="products[0]")

        error = exc_info.value
        assert error.product_id == product.id
        assert error.available == Decimal("2")
        assert error.requested == Decimal("5")
        assert error.errors[0].startswith("products[0]: ")
        db_session.rollback()
        assert _stock(db_session, product) == Decimal("2")

    def test_decrement_to_exactly_zero(self, db_session, make_product):
        product = make_product(on_hand="2.5")
        ledger = InventoryLedger(db_session)
        assert ledger.decrement(product.id, "2.5") == Decimal("0")

    def test_negative_amount_rejected(self, db_session, product):
        with pytest.raises(DomainValidationError):
            InventoryLedger(db_session).increment(product.id, -1)

    def test_apply_signed_delta(self, db_session, product):
        ledger = InventoryLedger(db_session)
        assert ledger.apply(product.id, -3) == Decimal("7")
        assert ledger.apply(product.id, 1) == Decimal("8")

    def test_unknown_product(self, db_session):
        with pytest.raises(ReferenceNotFoundError):
            InventoryLedger(db_session).lock([999])

    def test_locks_in_ascending_id_order(self, db_session, make_product):
        products = [make_product() for _ in range(3)]
        ids = [p.id for p in products]
        ledger = InventoryLedger(db_session)

        locked = ledger.lock(reversed(ids))

        assert set(locked) == set(ids)
        assert list(ledger._locked) == sorted(ids)

    def test_increment_above_column_limit_fails(self, db_session, make_product):
        product = make_product(on_hand="9999999999.00")
        ledger = InventoryLedger(db_session)

        with pytest.raises(DomainValidationError):
            ledger.increment(product.id, 1)

        assert ledger.increment(product.id, "0.99") == MAX_AMOUNT


# ===== ENTRADAS =====

class TestEntryService:

    def test_standalone_entry_requires_note(self, db_session, product):
        service = EntryService(db_session)
        with pytest.raises(DomainValidationError):
            service.create_entry(EntryCreate(product_id=product.id, quantity=5))
        with pytest.raises(DomainValidationError):
            service.create_entry(EntryCreate(product_id=product.id, quantity=5, note="   "))
        assert _stock(db_session, product) == Decimal("10")

    def test_invoice_and_contract_go_together(self, db_session, supplier_contract, product):
        service = EntryService(db_session)
        with pytest.raises(DomainValidationError):
            service.create_entry(EntryCreate(product_id=product.id, quantity=5, contract_id=supplier_contract.id))

    def test_entry_linked_to_invoice(self, db_session, supplier_contract, product):
        invoice = InvoiceService(db_session).create_invoice(InvoiceCreate(
            contract_id=supplier_contract.id, consecutive_number=1, issue_date=datetime(2025, 1, 1),
        ))
        entry = EntryService(db_session).create_entry(EntryCreate(
            product_id=product.id, quantity=2, invoice_id=invoice.id, contract_id=supplier_contract.id,
        ))
        assert entry.invoice_id == invoice.id
        assert _stock(db_session, product) == Decimal("12")

    def test_create_entry_increments_stock(self, db_session, product):
        entry = EntryService(db_session).create_entry(
            EntryCreate(id_producto=product.id, cantidad="5.5", costo="3", note="Inventario inicial")
        )
        assert entry.quantity == Decimal("5.50")
        assert entry.cost == Decimal("3.00")
        assert _stock(db_session, product) == Decimal("15.5")

    def test_update_quantity_moves_difference(self, db_session, product):
        service = EntryService(db_session)
        entry = service.create_entry(EntryCreate(product_id=product.id, quantity=5, note="Compra"))

        service.update_entry(entry.id, EntryUpdate(quantity=2))

        assert _stock(db_session, product) == Decimal("12")

    def test_update_product_moves_both(self, db_session, make_product):
        p1 = make_product(on_hand="0")
        p2 = make_product(on_hand="0")
        service = EntryService(db_session)
        entry = service.create_entry(EntryCreate(product_id=p1.id, quantity=5, note="Compra"))

        updated = service.update_entry(entry.id, EntryUpdate(product_id=p2.id, quantity=4))

        assert updated.product_id == p2.id
        assert _stock(db_session, p1) == Decimal("0")
        assert _stock(db_session, p2) == Decimal("4")

    def test_update_that_leaves_negative_stock_fails(self, db_session, product, sample_user):
        service = EntryService(db_session)
        entry = service.create_entry(EntryCreate(product_id=product.id, quantity=5, note="Compra"))
        StockOutService(db_session).create_stock_out(
            StockOutCreate(product_id=product.id, quantity=13, description="Venta al detalle"), sample_user.id
        )

        with pytest.raises(InsufficientStockError):
            service.update_entry(entry.id, EntryUpdate(quantity=1))

        assert _stock(db_session, product) == Decimal("2")
        assert service.get_entry(entry.id).quantity == Decimal("5")

    def test_update_cannot_drop_note_of_standalone_entry(self, db_session, product):
        service = EntryService(db_session)
        entry = service.create_entry(EntryCreate(product_id=product.id, quantity=5, note="Compra"))
        with pytest.raises(DomainValidationError):
            service.update_entry(entry.id, EntryUpdate(note=""))

    def test_delete_entry(self, db_session, product):
        service = EntryService(db_session)
        entry = service.create_entry(EntryCreate(product_id=product.id, quantity=5, note="Compra"))

        assert service.delete_entry(entry.id) is True
        assert service.delete_entry(entry.id) is False
        assert _stock(db_session, product) == Decimal("10")
        with pytest.raises(NotFoundError):
            service.get_entry(entry.id)

    def test_list_entries_newest_first(self, db_session, make_product):
        p1 = make_product()
        p2 = make_product()
        service = EntryService(db_session)
        older = service.create_entry(EntryCreate(
            product_id=p1.id, quantity=1, note="a", entry_date=datetime(2025, 1, 1)))
        newer = service.create_entry(EntryCreate(
            product_id=p1.id, quantity=1, note="b", entry_date=datetime(2025, 2, 1)))
        service.create_entry(EntryCreate(product_id=p2.id, quantity=1, note="c", entry_date=datetime(2025, 3, 1)))

        result = service.get_entries(EntryFilters(product_id=p1.id))

        assert result.total == 2
        assert [e.id for e in result.entries] == [newer.id, older.id]

    def test_quantity_and_cost_above_column_limit(self):
        with pytest.raises(ValidationError) as exc_info:
            EntryCreate(product_id=1, quantity="1e11", cost="1e11", note="Compra")
        assert len(exc_info.value.errors()) == 2

        with pytest.raises(ValidationError):
            StockOutCreate(product_id=1, quantity="1e11", description="Merma")

    def test_entry_cannot_overflow_stock(self, db_session, make_product):
        product = make_product(on_hand="9999999999.00")
        with pytest.raises(DomainValidationError):
            EntryService(db_session).create_entry(EntryCreate(product_id=product.id, quantity=5, note="Compra"))
        assert _stock(db_session, product) == Decimal("9999999999.00")


# ===== SALIDAS =====

class TestStockOutService:

    def test_create_stock_out(self, db_session, product, sample_user):
        stock_out = StockOutService(db_session).create_stock_out(
            StockOutCreate(product_id=product.id, cantidad="2.25", descripcion="Merma"), sample_user.id
        )
        assert stock_out.user_id == sample_user.id
        assert _stock(db_session, product) == Decimal("7.75")

    def test_insufficient_stock(self, db_session, product, sample_user):
        with pytest.raises(InsufficientStockError):
            StockOutService(db_session).create_stock_out(
                StockOutCreate(product_id=product.id, quantity=11, description="Merma"), sample_user.id
            )
        assert _stock(db_session, product) == Decimal("10")

    def test_update_moves_to_new_product(self, db_session, make_product, sample_user):
        p1 = make_product(on_hand="10")
        p2 = make_product(on_hand="10")
        service = StockOutService(db_session)
        stock_out = service.create_stock_out(
            StockOutCreate(product_id=p1.id, quantity=4, description="Consumo"), sample_user.id
        )

        service.update_stock_out(stock_out.id, StockOutUpdate(product_id=p2.id, quantity=6))

        assert _stock(db_session, p1) == Decimal("10")
        assert _stock(db_session, p2) == Decimal("4")

    def test_update_same_product(self, db_session, product, sample_user):
        service = StockOutService(db_session)
        stock_out = service.create_stock_out(
            StockOutCreate(product_id=product.id, quantity=4, description="Consumo"), sample_user.id
        )
        # Se devuelven las 4 antes de retirar las 10
        service.update_stock_out(stock_out.id, StockOutUpdate(quantity=10))
        assert _stock(db_session, product) == Decimal("0")

    def test_delete_restores_stock(self, db_session, product, sample_user):
        service = StockOutService(db_session)
        stock_out = service.create_stock_out(
            StockOutCreate(product_id=product.id, quantity=4, description="Consumo"), sample_user.id
        )
        assert service.delete_stock_out(stock_out.id) is True
        assert service.delete_stock_out(stock_out.id) is False
        assert _stock(db_session, product) == Decimal("10")


# ===== ENDPOINTS =====

class TestInventoryEndpoints:

    def test_create_entry(self, client, product, db_session):
        response = client.post("/inventory/entries/", json={
            "product_id": product.id, "quantity": 3, "note": "Donación",
        })
        assert response.status_code == 201
        assert _stock(db_session, product) == Decimal("13")

    def test_create_entry_without_note(self, client, product):
        response = client.post("/inventory/entries/", json={"product_id": product.id, "quantity": 3})
        assert response.status_code == 400
        assert len(response.json()["errors"]) == 1

    def test_create_entry_above_column_limit(self, client, product, db_session):
        response = client.post("/inventory/entries/", json={
            "product_id": product.id, "quantity": "100000000000", "note": "Compra",
        })
        assert response.status_code == 400
        assert len(response.json()["errors"]) == 1
        assert _stock(db_session, product) == Decimal("10")

    def test_stock_out_round_trip(self, client, product, db_session, sample_user):
        response = client.post("/inventory/stock-outs/", json={
            "product_id": product.id, "quantity": 3, "description": "Merma",
        })
        assert response.status_code == 201
        assert response.json()["user_id"] == sample_user.id

        listing = client.get("/inventory/stock-outs/", params={"product_id": product.id}).json()
        assert listing["total"] == 1

        assert client.delete(f"/inventory/stock-outs/{response.json()['id']}").status_code == 204
        assert _stock(db_session, product) == Decimal("10")

    def test_delete_missing_stock_out(self, client):
        assert client.delete("/inventory/stock-outs/999").status_code == 404

from fastapi import APIRouter, Depends, status, Query, Response
from typing import Optional
from datetime import datetime

from facturacion.common.exceptions import NotFoundError
from facturacion.core.config import settings
from facturacion.dependencies.dbDependencies import db_dependency
from facturacion.modules.auth.dependencies import AuthDependencies
from facturacion.modules.auth.schemas import AuthContext
from facturacion.modules.inventory.service import EntryService, StockOutService
from facturacion.modules.inventory.schemas import (
    EntryCreate, EntryUpdate, EntryOut, EntryFilters, EntryList,
    StockOutCreate, StockOutUpdate, StockOutOut, StockOutList
)

entries_router = APIRouter(prefix="/inventory/entries", tags=["Inventory Entries"])
stock_outs_router = APIRouter(prefix="/inventory/stock-outs", tags=["Stock Outs"])


# ===== ENTRIES =====

@entries_router.post("/", response_model=EntryOut, status_code=status.HTTP_201_CREATED)
def create_entry(
    entry_data: EntryCreate,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_editor())
):
    """Register goods received and add them to stock."""
    return EntryService(db).create_entry(entry_data)


@entries_router.get("/", response_model=EntryList)
def list_entries(
    db: db_dependency,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    product_id: Optional[int] = Query(None),
    contract_id: Optional[int] = Query(None),
    invoice_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    filters = EntryFilters(
        product_id=product_id,
        contract_id=contract_id,
        invoice_id=invoice_id,
        date_from=start_date,
        date_to=end_date,
    )
    return EntryService(db).get_entries(filters, limit, offset)


@entries_router.get("/{entry_id}", response_model=EntryOut)
def get_entry(
    entry_id: int,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return EntryService(db).get_entry(entry_id)


@entries_router.patch("/{entry_id}", response_model=EntryOut)
def update_entry(
    entry_id: int,
    entry_update: EntryUpdate,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_editor())
):
    """Update an entry; stock moves by the difference."""
    return EntryService(db).update_entry(entry_id, entry_update)


@entries_router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry(
    entry_id: int,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_editor())
):
    if not EntryService(db).delete_entry(entry_id):
        raise NotFoundError(f"La entrada con ID {entry_id} no existe")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== STOCK OUTS =====

@stock_outs_router.post("/", response_model=StockOutOut, status_code=status.HTTP_201_CREATED)
def create_stock_out(
    data: StockOutCreate,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_editor())
):
    """Take goods out of stock; the caller is recorded as responsible."""
    return StockOutService(db).create_stock_out(data, auth_context.user_id)


@stock_outs_router.get("/", response_model=StockOutList)
def list_stock_outs(
    db: db_dependency,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    product_id: Optional[int] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return StockOutService(db).get_stock_outs(product_id, limit, offset)


@stock_outs_router.get("/{stock_out_id}", response_model=StockOutOut)
def get_stock_out(
    stock_out_id: int,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return StockOutService(db).get_stock_out(stock_out_id)


@stock_outs_router.patch("/{stock_out_id}", response_model=StockOutOut)
def update_stock_out(
    stock_out_id: int,
    data: StockOutUpdate,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_editor())
):
    return StockOutService(db).update_stock_out(stock_out_id, data)


@stock_outs_router.delete("/{stock_out_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_stock_out(
    stock_out_id: int,
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_editor())
):
    if not StockOutService(db).delete_stock_out(stock_out_id):
        raise NotFoundError(f"La salida con ID {stock_out_id} no existe")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

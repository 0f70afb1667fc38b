from pydantic import BaseModel, Field, AliasChoices, ConfigDict
from decimal import Decimal
from typing import Optional, List
from datetime import datetime

from facturacion.common.utils import MAX_AMOUNT


# Inventory Entry Schemas
class EntryCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., gt=0, validation_alias=AliasChoices("product_id", "id_producto"))
    quantity: Decimal = Field(..., gt=0, le=MAX_AMOUNT, validation_alias=AliasChoices("quantity", "cantidad"))
    cost: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT, validation_alias=AliasChoices("cost", "costo"))
    invoice_id: Optional[int] = Field(None, gt=0)
    contract_id: Optional[int] = Field(None, gt=0)
    note: Optional[str] = Field(None, max_length=255, description="Obligatoria si la entrada no está ligada a una factura")
    entry_date: Optional[datetime] = None


class EntryUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[int] = Field(None, gt=0, validation_alias=AliasChoices("product_id", "id_producto"))
    quantity: Optional[Decimal] = Field(None, gt=0, le=MAX_AMOUNT, validation_alias=AliasChoices("quantity", "cantidad"))
    cost: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT, validation_alias=AliasChoices("cost", "costo"))
    invoice_id: Optional[int] = Field(None, gt=0)
    contract_id: Optional[int] = Field(None, gt=0)
    note: Optional[str] = Field(None, max_length=255)
    entry_date: Optional[datetime] = None


class EntryOut(BaseModel):
    id: int
    product_id: int
    invoice_id: Optional[int] = None
    contract_id: Optional[int] = None
    quantity: Decimal
    cost: Optional[Decimal] = None
    note: Optional[str] = None
    entry_date: datetime

    class Config:
        from_attributes = True


class EntryFilters(BaseModel):
    product_id: Optional[int] = None
    contract_id: Optional[int] = None
    invoice_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class EntryList(BaseModel):
    entries: List[EntryOut]
    total: int
    limit: int
    offset: int


# Stock Out Schemas
class StockOutCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., gt=0, validation_alias=AliasChoices("product_id", "id_producto"))
    quantity: Decimal = Field(..., gt=0, le=MAX_AMOUNT, validation_alias=AliasChoices("quantity", "cantidad"))
    description: str = Field(..., min_length=1, max_length=255,
                             validation_alias=AliasChoices("description", "descripcion"))
    out_date: Optional[datetime] = None


class StockOutUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[int] = Field(None, gt=0, validation_alias=AliasChoices("product_id", "id_producto"))
    quantity: Optional[Decimal] = Field(None, gt=0, le=MAX_AMOUNT, validation_alias=AliasChoices("quantity", "cantidad"))
    description: Optional[str] = Field(None, min_length=1, max_length=255,
                                       validation_alias=AliasChoices("description", "descripcion"))
    out_date: Optional[datetime] = None


class StockOutOut(BaseModel):
    id: int
    product_id: int
    user_id: int
    quantity: Decimal
    description: str
    out_date: datetime

    class Config:
        from_attributes = True


class StockOutList(BaseModel):
    stock_outs: List[StockOutOut]
    total: int
    limit: int
    offset: int

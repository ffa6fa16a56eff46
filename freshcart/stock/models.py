import uuid
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ConflictType(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"


class StockChangeEvent(BaseModel):
    product_id: uuid.UUID
    new_stock_quantity: int
    new_is_active: bool = True
    new_price: Optional[Decimal] = None


class CartLineForStock(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1)
    # price the shopper last saw; used to flag price changes
    seen_price: Optional[Decimal] = None


class StockInfo(BaseModel):
    product_id: uuid.UUID
    product_name: str
    stock_quantity: int
    is_active: bool = True
    price: Decimal
    variant_prices: Dict[uuid.UUID, Decimal] = Field(default_factory=dict)


class StockConflict(BaseModel):
    product_id: uuid.UUID
    product_name: str
    cart_quantity: int
    available_stock: int
    conflict_type: ConflictType


class PriceChange(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    seen_price: Decimal
    current_price: Decimal


class MonitorSnapshot(BaseModel):
    stock: Dict[uuid.UUID, StockInfo] = Field(default_factory=dict)
    conflicts: Dict[uuid.UUID, StockConflict] = Field(default_factory=dict)
    new_out_of_stock: List[uuid.UUID] = Field(default_factory=list)
    stock_reduced: List[uuid.UUID] = Field(default_factory=list)
    price_changes: List[PriceChange] = Field(default_factory=list)
    has_stock_changed: bool = False


class StockCheckIn(BaseModel):
    items: List[CartLineForStock] = Field(default_factory=list, max_length=200)


class StockCheckRow(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    product_name: str
    variant_name: Optional[str] = None
    requested_quantity: int
    available_stock: int
    is_available: bool
    price: Decimal


class StockUpdateIn(BaseModel):
    stock_quantity: int = Field(..., ge=0)
    is_active: Optional[bool] = None

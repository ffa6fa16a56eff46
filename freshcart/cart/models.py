import uuid
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

MAX_ITEM_QTY = 1000


class CartItemInput(BaseModel):
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1, le=MAX_ITEM_QTY)


class CartItemOut(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    product_name: str
    quantity: int
    unit_price: Decimal


class CartStockStatus(BaseModel):
    cart_item_id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    product_name: str
    cart_quantity: int
    available_stock: int
    has_conflict: bool
    suggested_quantity: int
    is_out_of_stock: bool
    unit_price: Decimal


class RemovedCartItem(BaseModel):
    product_id: uuid.UUID
    product_name: str
    quantity: int


class CartAdjustment(BaseModel):
    product_id: uuid.UUID
    product_name: str
    old_quantity: int
    new_quantity: int
    action: str  # "removed" | "adjusted"


class CartAdjustResult(BaseModel):
    adjusted_count: int = 0
    removed_count: int = 0
    adjustments: List[CartAdjustment] = Field(default_factory=list)
